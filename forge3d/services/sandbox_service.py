"""Sandbox Service - extract, validate and execute generated scene code.

Generated code is untrusted. It goes through three steps:

1. ``extract_code`` strips markdown fencing from the raw model reply.
2. ``validate_code`` runs a regex deny-list and checks that the entry point
   ``def create_object():`` is defined. This is a cheap pre-filter only.
3. ``execute_code`` compiles the fragment with RestrictedPython and runs it
   in a fresh globals dict whose only binding is ``THREE``, a read-only
   namespace over the scenekit constructors. Attribute reads are limited to
   scenekit objects and plain data, writes to the data attributes of nodes,
   vectors, colours and materials and to list or dict items. Fragment frames
   run under an ``ExecutionBudget`` of traced lines and wall-clock time.
   This is the actual containment boundary.
"""

import ast
import copy
import logging
import operator
import re
import sys
import time
from dataclasses import dataclass
from typing import Optional

from RestrictedPython import compile_restricted, safe_builtins
from RestrictedPython.Eval import default_guarded_getitem, default_guarded_getiter
from RestrictedPython.Guards import guarded_iter_unpack_sequence, guarded_unpack_sequence
from RestrictedPython.PrintCollector import PrintCollector

import scenekit
from forge3d import config

logger = logging.getLogger(__name__)

ENTRY_POINT = "create_object"
FRAGMENT_FILENAME = "<fragment>"
MAX_NODES = 1000
MAX_RANGE = 100_000


# ── Extraction ──────────────────────────────────────────────────

_FENCE_RE = re.compile(r"```[ \t]*[\w+#.-]*[ \t]*\r?\n(.*?)```", re.DOTALL)
_INLINE_FENCE_RE = re.compile(r"```(.*?)```", re.DOTALL)


def extract_code(text: str) -> str:
    """Return the body of the first fenced code block, or the whole text.

    Never raises: a reply without fencing is passed through trimmed and left
    for the validator to judge.
    """
    text = text or ""
    match = _FENCE_RE.search(text) or _INLINE_FENCE_RE.search(text)
    if match:
        return match.group(1).strip()
    return text.strip()


# ── Validation ──────────────────────────────────────────────────


@dataclass(frozen=True)
class DenyRule:
    name: str
    category: str
    pattern: re.Pattern
    description: str


def _rule(name, category, pattern, description, flags=re.IGNORECASE):
    return DenyRule(name, category, re.compile(pattern, flags | re.MULTILINE), description)


DENY_RULES = (
    # dynamic code evaluation
    _rule("eval", "dynamic-code", r"\beval\s*\(", "dynamic code evaluation"),
    _rule("exec", "dynamic-code", r"\bexec\s*\(", "dynamic code execution"),
    _rule("compile", "dynamic-code", r"\bcompile\s*\(", "dynamic code compilation"),
    _rule("function-constructor", "dynamic-code", r"\bFunction\s*\(", "dynamic function construction"),
    _rule("code-objects", "dynamic-code", r"\b(?:FunctionType|CodeType|LambdaType)\b",
          "dynamic function construction"),
    # network
    _rule("fetch", "network-access", r"\bfetch\s*\(", "network access"),
    _rule("socket", "network-access", r"\bsockets?\b", "network access"),
    _rule("http-client", "network-access",
          r"\b(?:urllib\d?|httpx|aiohttp|http\.client)\b|\brequests\s*\.", "network access"),
    _rule("xhr", "network-access", r"\b(?:XMLHttpRequest|WebSocket)\b", "network access"),
    # storage
    _rule("open", "storage-access", r"\bopen\s*\(", "file access"),
    _rule("browser-storage", "storage-access", r"\b(?:localStorage|sessionStorage|indexedDB)\b",
          "persistent storage access"),
    _rule("cookie", "storage-access", r"\bcookies?\b", "cookie access"),
    _rule("filesystem", "storage-access", r"\b(?:pathlib|shutil|pickle|tempfile)\b", "file access"),
    # ambient environment
    _rule("document", "environment-access", r"\bdocument\s*\.", "document object access"),
    _rule("window", "environment-access", r"\bwindow\s*\.", "global object access"),
    _rule("scope-reflection", "environment-access", r"\b(?:globals|locals|vars|dir)\s*\(",
          "scope reflection"),
    _rule("attribute-reflection", "environment-access", r"\b(?:getattr|setattr|delattr)\s*\(",
          "attribute reflection"),
    _rule("os-sys", "environment-access", r"\b(?:os|sys)\s*\.", "process environment access"),
    _rule("builtins", "environment-access", r"\bbuiltins\b", "builtins access"),
    _rule("interactive", "environment-access", r"\b(?:breakpoint|input|help|exit|quit)\s*\(",
          "interactive builtins"),
    # module loading
    _rule("import", "module-loading", r"\bimport\s+[\w.]", "module import"),
    _rule("from-import", "module-loading", r"\bfrom\s+[\w.]+\s+import\b", "module import"),
    _rule("dynamic-import", "module-loading", r"__import__|\bimportlib\b", "module import"),
    _rule("require", "module-loading", r"\brequire\s*\(", "module import"),
    # background execution
    _rule("timers", "background-execution", r"\b(?:setTimeout|setInterval|setImmediate)\s*\(",
          "timer scheduling"),
    _rule("workers", "background-execution", r"\bworkers?\b", "background workers"),
    _rule("threads", "background-execution",
          r"\b(?:threading|_thread|Thread|multiprocessing|concurrent|subprocess|asyncio)\b",
          "background execution", flags=0),
    _rule("async", "background-execution", r"\basync\s+(?:def|for|with)\b|\bawait\b",
          "asynchronous execution"),
    _rule("sleep", "background-execution", r"\bsleep\s*\(", "blocking sleep"),
    # prototype / introspection tampering
    _rule("prototype", "introspection", r"__proto__|\bprototype\b", "prototype chain access"),
    _rule("constructor-index", "introspection", r"\bconstructor\s*\[", "constructor property indexing"),
    _rule("dunder", "introspection", r"__\w+__", "dunder attribute access"),
    _rule("frame-access", "introspection",
          r"\b(?:gi_frame|gi_code|cr_frame|ag_frame|f_globals|f_locals|f_builtins|f_back|tb_frame|co_code)\b",
          "frame introspection"),
)

_ENTRY_POINT_RE = re.compile(
    rf"^[ \t]*def[ \t]+{ENTRY_POINT}[ \t]*\([ \t]*\)[ \t]*(?:->[^:\n]+)?:", re.MULTILINE
)


@dataclass
class ValidationResult:
    accepted: bool
    reason: Optional[str] = None
    rule: Optional[str] = None
    category: Optional[str] = None


def validate_code(code: str) -> ValidationResult:
    """Scan a fragment against the deny-list, then check for the entry point."""
    for rule in DENY_RULES:
        if rule.pattern.search(code):
            return ValidationResult(
                accepted=False,
                reason=(
                    f"Security violation: Forbidden pattern detected "
                    f"({rule.category}: {rule.description}, /{rule.pattern.pattern}/)"
                ),
                rule=rule.name,
                category=rule.category,
            )

    if not _ENTRY_POINT_RE.search(code):
        return ValidationResult(
            accepted=False,
            reason=f'Code must contain a "def {ENTRY_POINT}():" definition',
            rule="entry-point",
            category="structure",
        )

    return ValidationResult(accepted=True)


# ── Execution errors ────────────────────────────────────────────


class SandboxError(Exception):
    """Base class for every failure between validation and a usable node."""

    kind = "sandbox"


class SecurityViolation(SandboxError):
    kind = "security"

    def __init__(self, message: str, rule: Optional[str] = None):
        super().__init__(message)
        self.rule = rule


class ExecutionFailed(SandboxError):
    kind = "execution"


class EntryPointMissing(SandboxError):
    kind = "entry-point"


class EmptyResult(SandboxError):
    kind = "empty-result"


class WrongResultKind(SandboxError):
    kind = "result-kind"

    def __init__(self, message: str, observed: str):
        super().__init__(message)
        self.observed = observed


# ── Restricted scope ────────────────────────────────────────────

# Types whose public attributes generated code may read.
_READABLE_TYPES = (
    scenekit.Object3D,
    scenekit.Vector3,
    scenekit.Color,
    scenekit.Geometry,
    scenekit.Material,
    scenekit.MathUtils,
    str, int, float, bool, list, tuple, dict, range,
)

# Types whose attributes generated code may assign. Geometries are absent:
# their sizes are fixed at construction.
_ATTRIBUTE_WRITABLE_TYPES = (
    scenekit.Object3D,
    scenekit.Vector3,
    scenekit.Color,
    scenekit.Material,
)

# Types whose items generated code may assign.
_ITEM_WRITABLE_TYPES = (list, dict)

# Public scenekit members that hand out numpy/trimesh objects or generators.
_HIDDEN_ATTRIBUTES = frozenset({
    "matrix", "matrix_world", "to_trimesh", "triangle_count", "iter_nodes",
    "quaternion", "format", "format_map",
})

_INPLACE_OPERATORS = {
    "+=": operator.iadd,
    "-=": operator.isub,
    "*=": operator.imul,
    "/=": operator.itruediv,
    "//=": operator.ifloordiv,
    "%=": operator.imod,
    "**=": operator.ipow,
}

def _limited_range(*args):
    items = range(*args)
    if len(items) > MAX_RANGE:
        raise ValueError(f"range of {len(items)} items exceeds the limit of {MAX_RANGE}")
    return items


_EXTRA_BUILTINS = {
    "min": min,
    "max": max,
    "sum": sum,
    "abs": abs,
    "list": list,
    "dict": dict,
    "enumerate": enumerate,
    "reversed": reversed,
    "any": any,
    "all": all,
    "map": map,
    "filter": filter,
    "range": _limited_range,
}

# RestrictedPython's guarded setattr/delattr still honour class-level write
# permissions; generated code gets neither.
_BUILTINS = {
    name: value
    for name, value in {**safe_builtins, **_EXTRA_BUILTINS}.items()
    if name not in {"setattr", "delattr"}
}


class ThreeNamespace:
    """The single capability handed to generated code as ``THREE``."""

    def __init__(self):
        for name in (
            "Object3D", "Group", "Mesh", "Vector3", "Euler", "Color",
            "BoxGeometry", "SphereGeometry", "CylinderGeometry", "ConeGeometry",
            "TorusGeometry", "TorusKnotGeometry", "PlaneGeometry", "RingGeometry",
            "DodecahedronGeometry", "IcosahedronGeometry", "OctahedronGeometry",
            "TetrahedronGeometry",
            "MeshStandardMaterial", "MeshPhongMaterial", "MeshLambertMaterial",
            "MeshBasicMaterial",
            "FrontSide", "BackSide", "DoubleSide",
        ):
            object.__setattr__(self, name, getattr(scenekit, name))
        object.__setattr__(self, "MathUtils", scenekit.MathUtils())
        object.__setattr__(self, "PI", scenekit.MathUtils.pi)

    def __setattr__(self, name, value):
        raise AttributeError("THREE is read-only")

    def __delattr__(self, name):
        raise AttributeError("THREE is read-only")


def _guarded_getattr(obj, name, *default):
    if name.startswith("_") or name in _HIDDEN_ATTRIBUTES:
        raise AttributeError(f"access to {name!r} is not allowed")
    if not isinstance(obj, _READABLE_TYPES + (ThreeNamespace,)):
        raise AttributeError(f"attribute access on {type(obj).__name__} is not allowed")
    return getattr(obj, name, *default)


class _AttributeWriter:
    """Write wrapper for scenekit instances.

    Plain data attributes may be assigned; anything defined on the class
    (methods, properties, ``kind``) may not, and nothing may be deleted.
    """

    __slots__ = ("_target",)

    def __init__(self, target):
        object.__setattr__(self, "_target", target)

    def __setattr__(self, name, value):
        target = object.__getattribute__(self, "_target")
        if name in _HIDDEN_ATTRIBUTES or hasattr(type(target), name):
            raise AttributeError(f"cannot assign {type(target).__name__}.{name}")
        setattr(target, name, value)

    def __delattr__(self, name):
        target = object.__getattribute__(self, "_target")
        raise AttributeError(f"cannot delete {type(target).__name__}.{name}")

    def __setitem__(self, key, value):
        target = object.__getattribute__(self, "_target")
        raise TypeError(f"cannot assign items of {type(target).__name__}")

    def __delitem__(self, key):
        target = object.__getattribute__(self, "_target")
        raise TypeError(f"cannot delete items of {type(target).__name__}")


def _guarded_write(obj):
    if isinstance(obj, _ITEM_WRITABLE_TYPES):
        return obj
    if isinstance(obj, _ATTRIBUTE_WRITABLE_TYPES):
        return _AttributeWriter(obj)
    raise TypeError(f"cannot assign to {type(obj).__name__}")


def _inplace_var(op, x, y):
    try:
        fn = _INPLACE_OPERATORS[op]
    except KeyError:
        raise ValueError(f"unsupported in-place operator {op}")
    return fn(x, y)


def _apply(fn, *args, **kwargs):
    return fn(*args, **kwargs)


def build_scope() -> dict:
    """Fresh globals for one execution. Nothing in it is shared between runs."""
    return {
        "__builtins__": dict(_BUILTINS),
        "__name__": "fragment",
        "_getattr_": _guarded_getattr,
        "_getitem_": default_guarded_getitem,
        "_getiter_": default_guarded_getiter,
        "_iter_unpack_sequence_": guarded_iter_unpack_sequence,
        "_unpack_sequence_": guarded_unpack_sequence,
        "_write_": _guarded_write,
        "_inplacevar_": _inplace_var,
        "_apply_": _apply,
        "_print_": PrintCollector,
        "THREE": ThreeNamespace(),
    }


# ── Execution ───────────────────────────────────────────────────


class BudgetExceeded(BaseException):
    """Raised inside fragment frames once the execution budget is spent.

    Derives from BaseException so fragment code cannot swallow it with an
    ordinary handler; ``try`` statements are rejected at compile time anyway.
    """


class ExecutionBudget:
    """Line-count and wall-clock limit for fragment code, enforced via sys.settrace.

    Only frames compiled from the fragment are traced; scenekit and trimesh
    code called from the fragment runs untraced at full speed. The budget
    spans every ``with`` block it guards.
    """

    def __init__(self, max_steps: Optional[int] = None, seconds: Optional[float] = None):
        self.max_steps = config.EXECUTION_MAX_STEPS if max_steps is None else max_steps
        self.seconds = config.EXECUTION_TIMEOUT_SECONDS if seconds is None else seconds
        self.deadline = time.monotonic() + self.seconds
        self.steps = 0
        self.reason: Optional[str] = None
        self._previous = None

    def _trace_calls(self, frame, event, arg):
        if frame.f_code.co_filename != FRAGMENT_FILENAME:
            return None
        return self._trace_lines

    def _trace_lines(self, frame, event, arg):
        if event == "line":
            self.steps += 1
            if self.steps > self.max_steps:
                self.reason = f"execution budget exceeded ({self.max_steps} steps)"
            elif self.steps % 256 == 0 and time.monotonic() > self.deadline:
                self.reason = f"execution budget exceeded ({self.seconds:g}s)"
            if self.reason is not None:
                raise BudgetExceeded(self.reason)
        return self._trace_lines

    def __enter__(self):
        self._previous = sys.gettrace()
        sys.settrace(self._trace_calls)
        return self

    def __exit__(self, *exc_info):
        sys.settrace(self._previous)
        return False


class _AugmentedAssignmentLowering(ast.NodeTransformer):
    """Rewrite ``obj.attr += v`` and ``seq[i] += v`` as plain assignments.

    RestrictedPython only accepts augmented assignment to bare names; the
    plain form goes through the write guard like any other assignment.
    """

    def visit_AugAssign(self, node):
        if isinstance(node.target, ast.Name):
            return node
        current = copy.deepcopy(node.target)
        current.ctx = ast.Load()
        assign = ast.Assign(
            targets=[node.target],
            value=ast.BinOp(left=current, op=node.op, right=node.value),
        )
        return ast.copy_location(assign, node)


_TRY_NODES = tuple(t for t in (ast.Try, getattr(ast, "TryStar", None)) if t is not None)


def _compile(code: str):
    try:
        tree = ast.parse(code, filename=FRAGMENT_FILENAME)
    except SyntaxError as e:
        raise ExecutionFailed(f"Code execution failed: invalid syntax at line {e.lineno}: {e.msg}")
    for node in ast.walk(tree):
        if isinstance(node, _TRY_NODES):
            raise SecurityViolation(
                f"Security violation: try statements are not allowed (line {node.lineno})",
                rule="try-statement",
            )
    tree = ast.fix_missing_locations(_AugmentedAssignmentLowering().visit(tree))
    try:
        return compile_restricted(tree, filename=FRAGMENT_FILENAME, mode="exec")
    except SyntaxError as e:
        details = "; ".join(e.args[0]) if e.args and isinstance(e.args[0], (list, tuple)) else str(e)
        raise SecurityViolation(f"Security violation: {details}", rule="restricted-compile")


def _run(budget: ExecutionBudget, fn, *args):
    try:
        with budget:
            return fn(*args)
    except BudgetExceeded as e:
        raise ExecutionFailed(f"Code execution failed: {e}") from None
    except Exception as e:
        raise ExecutionFailed(f"Code execution failed: {type(e).__name__}: {e}") from e


def _detach(node: scenekit.Object3D) -> None:
    parent = node.parent
    if isinstance(parent, scenekit.Object3D) and isinstance(parent.children, list):
        parent.children[:] = [c for c in parent.children if c is not node]
    node.parent = None


def execute_code(code: str) -> scenekit.Object3D:
    """Run a fragment and return the node built by its entry point.

    Raises a SandboxError subclass on any failure; no partial result escapes.
    """
    validation = validate_code(code)
    if not validation.accepted:
        logger.warning(f"Rejected fragment at execution time: {validation.reason}")
        raise SecurityViolation(validation.reason, rule=validation.rule)

    byte_code = _compile(code)
    scope = build_scope()
    budget = ExecutionBudget()

    _run(budget, exec, byte_code, scope)

    entry = scope.get(ENTRY_POINT)
    if not callable(entry):
        raise EntryPointMissing(f"Code execution failed: {ENTRY_POINT} function not found")

    result = _run(budget, entry)

    if result is None:
        raise EmptyResult(f"Code execution failed: {ENTRY_POINT}() returned None")

    if not scenekit.is_scene_node(result):
        observed = type(result).__name__
        raise WrongResultKind(
            f"Code execution failed: expected a Mesh, Group or Object3D but got {observed}",
            observed=observed,
        )

    _detach(result)
    try:
        node_count = scenekit.check_tree(result)
    except (TypeError, ValueError) as e:
        raise WrongResultKind(f"Code execution failed: {e}", observed=type(result).__name__) from e
    if node_count > MAX_NODES:
        raise ExecutionFailed(
            f"Code execution failed: object has {node_count} nodes (limit {MAX_NODES})"
        )

    logger.info(
        f"Fragment produced {result.kind.value} with {node_count} node(s) in {budget.steps} steps"
    )
    return result


def run(text: str) -> tuple[str, scenekit.Object3D]:
    """Extract then execute. Returns (code, node)."""
    code = extract_code(text)
    return code, execute_code(code)
