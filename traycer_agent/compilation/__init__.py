from .config_loader import CONFIG_SCHEMA, AgentConfig, build_agent_config, load_agent_config, validate_config

__all__ = ["CONFIG_SCHEMA", "AgentConfig", "build_agent_config", "load_agent_config", "validate_config"]
