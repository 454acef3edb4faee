"""Built-in version-control provider backed by the ``git`` executable."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

from ..provider_ir import ExecutionContext
from .base import CapabilityProvider, CapabilityTool


logger = logging.getLogger(__name__)

GIT_TIMEOUT_SECONDS = 15.0


class GitCommandError(RuntimeError):
    def __init__(self, args: List[str], returncode: int, stderr: str) -> None:
        super().__init__(f"git {' '.join(args)} exited with {returncode}: {stderr.strip()}")
        self.returncode = returncode
        self.stderr = stderr


class GitProvider(CapabilityProvider):
    name = "git"
    provides_tools = True

    def __init__(self, workspace_root: Optional[str] = None, git_executable: str = "git") -> None:
        self.workspace_root = workspace_root or ""
        self.git_executable = git_executable

    async def run_git(self, cwd: str, *args: str) -> str:
        proc = await asyncio.create_subprocess_exec(
            self.git_executable,
            *args,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=GIT_TIMEOUT_SECONDS)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            raise GitCommandError(list(args), proc.returncode, stderr.decode("utf-8", "replace"))
        return stdout.decode("utf-8", "replace")

    async def provide_context(self, ctx: ExecutionContext) -> Dict[str, Any]:
        root = ctx.workspace_root or self.workspace_root
        if not root:
            return {"error": "No workspace root provided"}

        try:
            branch, status, last_commit = await asyncio.gather(
                self.run_git(root, "rev-parse", "--abbrev-ref", "HEAD"),
                self.run_git(root, "status", "--short"),
                self.run_git(root, "log", "-1", "--pretty=format:%s"),
            )
        except (OSError, GitCommandError, asyncio.TimeoutError) as exc:
            logger.debug(f"git context unavailable for {root}: {exc}")
            return {"error": "Not a git repository or git not found"}

        return {
            "branch": branch.strip(),
            "status": [line for line in status.strip().split("\n") if line],
            "lastCommit": last_commit.strip(),
        }

    # --- tools ---------------------------------------------------------------
    def list_tools(self) -> List[CapabilityTool]:
        return [
            CapabilityTool(
                name="status",
                description="Show the working tree status of the workspace repository in short format.",
                input_schema={"type": "object", "properties": {}},
                execute=self.status,
            ),
            CapabilityTool(
                name="log",
                description="Show recent commits (hash, author, date, subject) of the current branch.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "maxCount": {"type": "number", "description": "Number of commits to return (default: 10)"},
                    },
                },
                execute=self.log,
            ),
            CapabilityTool(
                name="diff",
                description="Show uncommitted changes, optionally limited to one path or to staged changes.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "Limit the diff to this path (optional)"},
                        "staged": {"type": "boolean", "description": "Show staged changes instead of unstaged ones"},
                    },
                },
                execute=self.diff,
            ),
        ]

    async def _run_tool(self, label: str, *args: str) -> Dict[str, Any]:
        if not self.workspace_root:
            return {"success": False, "error": "No workspace root provided"}
        try:
            output = await self.run_git(self.workspace_root, *args)
        except (OSError, GitCommandError, asyncio.TimeoutError) as exc:
            return {"success": False, "error": f"Failed to run git {label}: {exc}"}
        return {"success": True, "output": output}

    async def status(self, args: Dict[str, Any]) -> Dict[str, Any]:
        result = await self._run_tool("status", "status", "--short", "--branch")
        if result["success"]:
            result["lines"] = [line for line in result.pop("output").split("\n") if line]
        return result

    async def log(self, args: Dict[str, Any]) -> Dict[str, Any]:
        max_count = int(args.get("maxCount") or 10)
        result = await self._run_tool("log", "log", f"--max-count={max_count}", "--pretty=format:%h%x09%an%x09%ad%x09%s", "--date=short")
        if result["success"]:
            commits = []
            for line in result.pop("output").split("\n"):
                if not line:
                    continue
                sha, author, date, subject = (line.split("\t", 3) + ["", "", "", ""])[:4]
                commits.append({"hash": sha, "author": author, "date": date, "subject": subject})
            result["commits"] = commits
        return result

    async def diff(self, args: Dict[str, Any]) -> Dict[str, Any]:
        git_args = ["diff"]
        if args.get("staged"):
            git_args.append("--cached")
        if args.get("path"):
            git_args.extend(["--", str(args["path"])])
        result = await self._run_tool("diff", *git_args)
        if result["success"]:
            result["diff"] = result.pop("output")
        return result
