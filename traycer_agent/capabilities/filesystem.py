"""Built-in workspace filesystem provider."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from ..provider_ir import ExecutionContext
from .base import CapabilityProvider, CapabilityTool


logger = logging.getLogger(__name__)

EXCLUDED_DIRS = {"node_modules", ".git"}
CONTEXT_SCAN_LIMIT = 100
SAMPLE_FILE_COUNT = 10
DEFAULT_SEARCH_RESULTS = 50


class FileSystemProvider(CapabilityProvider):
    name = "filesystem"
    provides_tools = True

    def __init__(self, workspace_root: Optional[str] = None) -> None:
        self.workspace_root = workspace_root or ""

    # --- helpers -------------------------------------------------------------
    def _root(self) -> Optional[Path]:
        return Path(self.workspace_root) if self.workspace_root else None

    def _resolve(self, input_path: str) -> Path:
        path = Path(input_path)
        root = self._root()
        if path.is_absolute() or root is None:
            return path
        return root / path

    def _iter_files(self, root: Path) -> Iterator[Path]:
        for dirpath, dirnames, filenames in os.walk(root):
            dirnames[:] = sorted(d for d in dirnames if d not in EXCLUDED_DIRS)
            for filename in sorted(filenames):
                yield Path(dirpath) / filename

    # --- context -------------------------------------------------------------
    async def provide_context(self, ctx: ExecutionContext) -> Dict[str, Any]:
        root_value = ctx.workspace_root or self.workspace_root
        if not root_value:
            return {"error": "No workspace folders found"}
        root = Path(root_value)

        selection_context: Dict[str, Any] = {}
        if ctx.selection is not None:
            try:
                selected = self._resolve(ctx.selection.file)
                lines = selected.read_text(encoding="utf-8", errors="replace").split("\n")
                selection_context = {
                    "file": ctx.selection.file,
                    "content": "\n".join(lines[ctx.selection.start_line : ctx.selection.end_line + 1]),
                    "range": {"start": ctx.selection.start_line, "end": ctx.selection.end_line},
                }
            except OSError as exc:
                logger.warning(f"Failed to read selection context: {exc}")

        files: List[Path] = []
        for path in self._iter_files(root):
            files.append(path)
            if len(files) >= CONTEXT_SCAN_LIMIT:
                break

        return {
            "rootPath": str(root),
            "selection": selection_context,
            "fileCount": len(files),
            "sampleFiles": [p.relative_to(root).as_posix() for p in files[:SAMPLE_FILE_COUNT]],
        }

    # --- tools ---------------------------------------------------------------
    def list_tools(self) -> List[CapabilityTool]:
        return [
            CapabilityTool(
                name="list_dir",
                description="List contents of a directory in the workspace. Returns file and directory names with their types.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "Relative or absolute path to the directory to list"},
                    },
                    "required": ["path"],
                },
                execute=self.list_dir,
            ),
            CapabilityTool(
                name="read_file",
                description="Read the content of a file in the workspace. Returns the file content as text.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "path": {"type": "string", "description": "Relative or absolute path to the file to read"},
                        "maxLines": {"type": "number", "description": "Maximum number of lines to read (optional, default: all)"},
                    },
                    "required": ["path"],
                },
                execute=self.read_file,
            ),
            CapabilityTool(
                name="search_files",
                description="Search for files matching a glob pattern in the workspace.",
                input_schema={
                    "type": "object",
                    "properties": {
                        "pattern": {"type": "string", "description": 'Glob pattern to match files (e.g., "**/*.ts", "src/**/*.js")'},
                        "maxResults": {"type": "number", "description": "Maximum number of results to return (default: 50)"},
                    },
                    "required": ["pattern"],
                },
                execute=self.search_files,
            ),
        ]

    async def list_dir(self, args: Dict[str, Any]) -> Dict[str, Any]:
        try:
            target = self._resolve(str(args["path"]))
            entries = [
                {"name": entry.name, "type": "directory" if entry.is_dir() else "file"}
                for entry in sorted(target.iterdir(), key=lambda p: p.name)
            ]
            return {"success": True, "path": str(target), "entries": entries}
        except (OSError, KeyError) as exc:
            return {"success": False, "error": f"Failed to list directory: {exc}"}

    async def read_file(self, args: Dict[str, Any]) -> Dict[str, Any]:
        try:
            target = self._resolve(str(args["path"]))
            text = target.read_text(encoding="utf-8", errors="replace")
        except (OSError, KeyError) as exc:
            return {"success": False, "error": f"Failed to read file: {exc}"}

        max_lines = args.get("maxLines")
        if max_lines and int(max_lines) > 0:
            limit = int(max_lines)
            lines = text.split("\n")
            text = "\n".join(lines[:limit])
            if len(lines) > limit:
                text += f"\n... ({len(lines) - limit} more lines)"

        return {
            "success": True,
            "path": str(target),
            "content": text,
            "lineCount": len(text.split("\n")),
        }

    async def search_files(self, args: Dict[str, Any]) -> Dict[str, Any]:
        try:
            pattern = str(args["pattern"])
            max_results = int(args.get("maxResults") or DEFAULT_SEARCH_RESULTS)
            root = self._root() or Path(".")
            matches: List[str] = []
            for path in sorted(root.glob(pattern)):
                if not path.is_file():
                    continue
                if any(part in EXCLUDED_DIRS for part in path.relative_to(root).parts):
                    continue
                matches.append(path.relative_to(root).as_posix())
                if len(matches) >= max_results:
                    break
            return {
                "success": True,
                "pattern": pattern,
                "files": matches,
                "count": len(matches),
                "truncated": len(matches) >= max_results,
            }
        except (OSError, KeyError, ValueError, NotImplementedError) as exc:
            return {"success": False, "error": f"Failed to search files: {exc}"}
