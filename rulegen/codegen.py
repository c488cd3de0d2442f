"""
Code generation for a single rule.

A rule compiles to straight-line Python inside a per-rule function:

    compile_match  - guards that return False on the first failed check,
                     binding variables as locals along the way
    compile_result - statements that rebuild the matched term, returning
                     the expression that names each built node

For the rule (Sub x y) -> (Add x (Neg y)) this produces:

    if len(v.args) != 2:
        return False
    x = v.args[0]
    y = v.args[1]
    v.op = Op.Add
    v.aux = None
    v.reset_args()
    v.add_arg(x)
    v0 = v.block.new_value(Op.Neg, TypeInvalid, None)
    v0.add_arg(y)
    v0.set_type()
    v.add_arg(v0)

Terms are compared by identity ("is"), so common subexpressions must
already be shared in the input. Type and aux fields use "!=".
"""

import keyword
import re
from contextlib import contextmanager
from io import StringIO
from typing import Dict, Iterable, Optional, Set, Tuple, Union

from .patterns import (
    AuxConstraint, LiteralPin, OpaqueCode, Pattern, TypeConstraint, Variable,
)

# Binding namespaces
VAR = "var"
TYPE = "type"
AUX = "aux"

FAIL = "return False"

# Names the generated code itself refers to inside a rule function
GENERATED_NAMES = frozenset({"v", "len"}) | frozenset(keyword.kwlist)

_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")


class Target:
    """
    How generated code talks to the term type.

    Args:
        op_prefix: Prefix turning a tag into an operator constant ("Op." -> Op.Add)
        invalid_type: Placeholder type for freshly allocated nodes
        allocator: Callable expression that allocates a node from (op, type, aux)
    """

    def __init__(self, op_prefix: str = "Op.", invalid_type: str = "TypeInvalid",
                 allocator: str = "v.block.new_value"):
        self.op_prefix = op_prefix
        self.invalid_type = invalid_type
        self.allocator = allocator

    def op(self, tag: str) -> str:
        return f"{self.op_prefix}{tag}"

    def names(self) -> Set[str]:
        """Free names the generated code uses to reach the term API."""
        names = set()
        for expr in (self.op_prefix, self.invalid_type, self.allocator):
            m = _IDENTIFIER.match(expr)
            if m:
                names.add(m.group())
        return names

    def __repr__(self) -> str:
        return (f"Target(op_prefix={self.op_prefix!r}, "
                f"invalid_type={self.invalid_type!r}, allocator={self.allocator!r})")


DEFAULT_TARGET = Target()


# ============================================================
# Code writer
# ============================================================

class CodeWriter:
    """Line-oriented source buffer with indentation tracking."""

    def __init__(self, indent_str: str = "    "):
        self._buffer = StringIO()
        self._indent_str = indent_str
        self._level = 0

    def line(self, code: str = "") -> None:
        """Write one line at the current indentation."""
        if code:
            self._buffer.write(self._indent_str * self._level)
            self._buffer.write(code)
        self._buffer.write("\n")

    def comment(self, text: str) -> None:
        self.line(f"# {text}".rstrip())

    @contextmanager
    def block(self, header: str):
        """Write header and indent the lines written inside the with-block."""
        self.line(header)
        self._level += 1
        try:
            yield self
        finally:
            self._level -= 1

    def guard(self, failed: str) -> None:
        """Fall through to the next rule when failed holds."""
        with self.block(f"if {failed}:"):
            self.line(FAIL)

    def getvalue(self) -> str:
        return self._buffer.getvalue()


# ============================================================
# Binding environment
# ============================================================

class Environment:
    """
    Names bound while matching one rule.

    Maps (namespace, name) to the local that holds the value. Variables,
    type variables and aux variables live in separate namespaces, so
    (Op <x> x) binds two different things. Locals are named after the
    variable, so conditions can refer to them. A name that is already
    taken, by another namespace or by the generated code itself (v, len,
    keywords, reserved), gets a suffix: x_type, then x_type2, ...
    """

    __slots__ = ('_bound', '_locals')

    def __init__(self, reserved: Iterable[str] = ()):
        self._bound: Dict[Tuple[str, str], str] = {}
        self._locals: Set[str] = set(GENERATED_NAMES)
        self._locals.update(reserved)

    def lookup(self, kind: str, name: str) -> Optional[str]:
        return self._bound.get((kind, name))

    def taken(self, local: str) -> bool:
        return local in self._locals

    def reserve(self, local: str) -> None:
        self._locals.add(local)

    def bind(self, kind: str, name: str) -> str:
        """Reserve a local for name in the given namespace and return it."""
        local = name
        n = 1
        while local in self._locals:
            local = f"{name}_{kind}" if n == 1 else f"{name}_{kind}{n}"
            n += 1
        self._bound[(kind, name)] = local
        self._locals.add(local)
        return local

    def __contains__(self, key: Tuple[str, str]) -> bool:
        return key in self._bound

    def __len__(self) -> int:
        return len(self._bound)

    def __repr__(self) -> str:
        return f"Environment({self._bound})"


# ============================================================
# Matching
# ============================================================

def _match_field(value: Union[Variable, OpaqueCode], field: str, kind: str,
                 writer: CodeWriter, env: Environment) -> None:
    if isinstance(value, OpaqueCode):
        writer.guard(f"{field} != ({value.text})")
        return
    bound = env.lookup(kind, value.name)
    if bound is not None:
        writer.guard(f"{field} != {bound}")
    else:
        writer.line(f"{env.bind(kind, value.name)} = {field}")


def compile_match(pattern: Pattern, ref: str, writer: CodeWriter, env: Environment,
                  top: bool = False, target: Target = DEFAULT_TARGET) -> None:
    """
    Emit guards checking that the term named by ref matches pattern.

    Args:
        pattern: The match pattern (or a sub-pattern of it)
        ref: Expression naming the term being checked
        writer: Output buffer
        env: Bindings of the rule being compiled
        top: True for the rule's outermost pattern, whose operator was
             already checked by the dispatch
        target: Term interface naming conventions
    """
    if isinstance(pattern, Variable):
        bound = env.lookup(VAR, pattern.name)
        if bound is not None:
            # Repeated variable: same term, by identity.
            writer.guard(f"{ref} is not {bound}")
        else:
            writer.line(f"{env.bind(VAR, pattern.name)} = {ref}")
        return

    if not top:
        writer.guard(f"{ref}.op != {target.op(pattern.tag)}")
    writer.guard(f"len({ref}.args) != {pattern.arity}")

    argnum = 0
    for arg in pattern.args:
        if isinstance(arg, TypeConstraint):
            _match_field(arg.value, f"{ref}.type", TYPE, writer, env)
        elif isinstance(arg, AuxConstraint):
            _match_field(arg.value, f"{ref}.aux", AUX, writer, env)
        elif isinstance(arg, LiteralPin):
            writer.guard(f"{ref}.args[{argnum}] is not ({arg.code.text})")
            argnum += 1
        else:
            compile_match(arg, f"{ref}.args[{argnum}]", writer, env,
                          target=target)
            argnum += 1


# ============================================================
# Result construction
# ============================================================

class Allocator:
    """
    Hands out fresh local names v0, v1, ... for one rule.

    Names already taken in env (a variable called v0, say) are skipped.
    """

    __slots__ = ('count', 'env')

    def __init__(self, env: Optional[Environment] = None):
        self.count = 0
        self.env = env

    def next_name(self) -> str:
        while True:
            name = f"v{self.count}"
            self.count += 1
            if self.env is None:
                return name
            if not self.env.taken(name):
                self.env.reserve(name)
                return name


class MutateInPlace:
    """Rebuild the already-matched term. Its type is never re-inferred."""

    infers_type = False

    def __init__(self, ref: str = "v"):
        self.ref = ref

    def setup(self, tag: str, writer: CodeWriter, alloc: Allocator,
              target: Target) -> str:
        writer.line(f"{self.ref}.op = {target.op(tag)}")
        writer.line(f"{self.ref}.aux = None")
        writer.line(f"{self.ref}.reset_args()")
        return self.ref


class AllocateNew:
    """Allocate a fresh term; its type is inferred unless given explicitly."""

    infers_type = True

    def setup(self, tag: str, writer: CodeWriter, alloc: Allocator,
              target: Target) -> str:
        ref = alloc.next_name()
        writer.line(f"{ref} = {target.allocator}({target.op(tag)}, "
                    f"{target.invalid_type}, None)")
        return ref


def _result_field(value: Union[Variable, OpaqueCode], kind: str,
                  env: Environment) -> str:
    if isinstance(value, OpaqueCode):
        return value.text
    return env.lookup(kind, value.name) or value.name


def compile_result(pattern: Pattern, writer: CodeWriter, env: Environment,
                   alloc: Allocator, top: bool = False,
                   target: Target = DEFAULT_TARGET) -> str:
    """
    Emit statements building pattern and return an expression naming it.

    The outermost node of a result rewrites the matched term in place;
    nested nodes are allocated. A bare variable emits nothing and names
    the term bound during matching.
    """
    if isinstance(pattern, Variable):
        return env.lookup(VAR, pattern.name) or pattern.name

    strategy = MutateInPlace() if top else AllocateNew()
    ref = strategy.setup(pattern.tag, writer, alloc, target)
    needs_type = strategy.infers_type

    for arg in pattern.args:
        if isinstance(arg, TypeConstraint):
            writer.line(f"{ref}.type = {_result_field(arg.value, TYPE, env)}")
            needs_type = False
        elif isinstance(arg, AuxConstraint):
            writer.line(f"{ref}.aux = {_result_field(arg.value, AUX, env)}")
        elif isinstance(arg, LiteralPin):
            writer.line(f"{ref}.add_arg({arg.code.text})")
        else:
            child = compile_result(arg, writer, env, alloc, target=target)
            writer.line(f"{ref}.add_arg({child})")

    if needs_type:
        writer.line(f"{ref}.set_type()")
    return ref
