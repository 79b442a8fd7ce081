"""Static lint for operator-supplied integration scripts.

This runs before any script is executed and rejects code that cannot work or
reaches for dynamic evaluation and reflection. It is a first line of defense
only; isolation comes from the sandbox worker process.
"""

import ast
from typing import List, Optional, Union

from evidence_sync.models import ScriptValidationResult

BANNED_CALLS = {
    "eval",
    "exec",
    "compile",
    "__import__",
    "open",
    "getattr",
    "setattr",
    "delattr",
    "globals",
    "locals",
    "vars",
    "breakpoint",
    "input",
    "memoryview",
}

FunctionNode = Union[ast.FunctionDef, ast.AsyncFunctionDef]


def _is_dunder(name: str) -> bool:
    return name.startswith("__") and name.endswith("__")


def _find_sync(tree: ast.Module) -> Optional[ast.AST]:
    for node in tree.body:
        if isinstance(node, (ast.FunctionDef, ast.AsyncFunctionDef)) and node.name == "sync":
            return node
        if isinstance(node, ast.Assign):
            if any(isinstance(t, ast.Name) and t.id == "sync" for t in node.targets):
                return node
    return None


def _has_return(func: FunctionNode) -> bool:
    for node in ast.walk(func):
        if isinstance(node, ast.Return) and node.value is not None:
            return True
    return False


class _BannedConstructVisitor(ast.NodeVisitor):
    def __init__(self):
        self.errors: List[str] = []

    def _error(self, node: ast.AST, message: str) -> None:
        line = getattr(node, "lineno", None)
        self.errors.append(f"line {line}: {message}" if line else message)

    def visit_Import(self, node: ast.Import) -> None:
        self._error(node, "import statements are not allowed; use the helpers on context")

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self._error(node, "import statements are not allowed; use the helpers on context")

    def visit_Call(self, node: ast.Call) -> None:
        if isinstance(node.func, ast.Name) and node.func.id in BANNED_CALLS:
            self._error(node, f"{node.func.id}() is not allowed for security reasons")
        self.generic_visit(node)

    def visit_Name(self, node: ast.Name) -> None:
        if _is_dunder(node.id):
            self._error(node, f"access to {node.id} is not allowed")
        elif node.id in BANNED_CALLS and not isinstance(node.ctx, ast.Store):
            self._error(node, f"referencing {node.id} is not allowed for security reasons")

    def visit_Attribute(self, node: ast.Attribute) -> None:
        if node.attr.startswith("__") or node.attr in ("gi_frame", "f_globals", "f_builtins", "cr_frame"):
            self._error(node, f"access to attribute '{node.attr}' is not allowed")
        self.generic_visit(node)

    def visit_Global(self, node: ast.Global) -> None:
        self._error(node, "global statements are not allowed")


def validate_script(code: str, max_bytes: Optional[int] = None) -> ScriptValidationResult:
    """Lint a script that must define ``sync(context)``."""
    errors: List[str] = []
    warnings: List[str] = []

    if not code or not code.strip():
        return ScriptValidationResult(valid=False, errors=["Script is empty"])

    if max_bytes is not None and len(code.encode("utf-8")) > max_bytes:
        return ScriptValidationResult(
            valid=False, errors=[f"Script exceeds the maximum size of {max_bytes} bytes"]
        )

    try:
        tree = ast.parse(code, filename="<integration-script>")
    except SyntaxError as e:
        return ScriptValidationResult(
            valid=False, errors=[f"Syntax error: {e.msg} (line {e.lineno})"]
        )

    sync_node = _find_sync(tree)
    if sync_node is None:
        errors.append('Missing required "sync" function')
    elif isinstance(sync_node, (ast.FunctionDef, ast.AsyncFunctionDef)):
        params = sync_node.args.posonlyargs + sync_node.args.args
        if not params and sync_node.args.vararg is None:
            warnings.append("sync() takes no arguments; it is called with a context object")
        if not _has_return(sync_node):
            warnings.append('sync() never returns a value; expected {"evidence": [...]}')

    visitor = _BannedConstructVisitor()
    visitor.visit(tree)
    errors.extend(visitor.errors)

    return ScriptValidationResult(valid=not errors, errors=errors, warnings=warnings)
