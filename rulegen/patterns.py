"""
Pattern syntax for rewrite rules.

Both sides of a rule use the same s-expression grammar:

    sexpr    ::= (opcode sexpr*)
               | variable
               | [aux]
               | <type>
               | {code}

    aux      ::= variable | {code}
    type     ::= variable | {code}
    variable ::= any token
    opcode   ::= an operator tag name

Examples:
    (Add x x)
    (Load <t> ptr mem)
    (Const [2])
    (Lsh x {c})
    (Store <{TypeMem}> [{8}] p v m)

Code in braces is never interpreted. It is carried through as OpaqueCode
and spliced verbatim into the generated source.
"""

from typing import Iterator, List, Union

from .errors import MalformedExpression


OPENERS = "({[<"
CLOSERS = ")}]>"
WHITESPACE = " \t\r\n"


# ============================================================
# Tokenizer
# ============================================================

def split_tokens(s: str) -> Iterator[str]:
    """
    Split s into top-level tokens.

    Whitespace nested inside any bracket pair does not split. All four
    bracket kinds share one depth counter, so "(a [b c> d)" is one token.

    Examples:
        list(split_tokens("Add x (Neg y)"))     -> ["Add", "x", "(Neg y)"]
        list(split_tokens("Const <t> [{1 + 2}]")) -> ["Const", "<t>", "[{1 + 2}]"]

    Raises MalformedExpression when the brackets do not balance.
    """
    depth = 0
    start = None
    for i, c in enumerate(s):
        if c in OPENERS:
            depth += 1
        elif c in CLOSERS:
            depth -= 1
        elif c in WHITESPACE:
            if depth == 0 and start is not None:
                yield s[start:i]
                start = None
            continue
        if start is None:
            start = i
    if depth != 0:
        raise MalformedExpression(s)
    if start is not None:
        yield s[start:].rstrip(WHITESPACE)


# ============================================================
# Pattern nodes
# ============================================================

class OpaqueCode:
    """A fragment of target code, spliced into the output unevaluated."""

    __slots__ = ('text',)

    def __init__(self, text: str):
        self.text = text

    def __eq__(self, other):
        return isinstance(other, OpaqueCode) and self.text == other.text

    def __hash__(self):
        return hash((OpaqueCode, self.text))

    def __repr__(self) -> str:
        return f"OpaqueCode({self.text!r})"


class Variable:
    """A named hole. Binds on first occurrence, checks identity afterwards."""

    __slots__ = ('name',)

    def __init__(self, name: str):
        self.name = name

    def __eq__(self, other):
        return isinstance(other, Variable) and self.name == other.name

    def __hash__(self):
        return hash((Variable, self.name))

    def __repr__(self) -> str:
        return f"Variable({self.name!r})"


class TypeConstraint:
    """<t> or <{code}>: constrains (or sets) the type field."""

    __slots__ = ('value',)

    def __init__(self, value: Union[Variable, OpaqueCode]):
        self.value = value

    def __eq__(self, other):
        return isinstance(other, TypeConstraint) and self.value == other.value

    def __hash__(self):
        return hash((TypeConstraint, self.value))

    def __repr__(self) -> str:
        return f"TypeConstraint({self.value!r})"


class AuxConstraint:
    """[a] or [{code}]: constrains (or sets) the auxiliary field."""

    __slots__ = ('value',)

    def __init__(self, value: Union[Variable, OpaqueCode]):
        self.value = value

    def __eq__(self, other):
        return isinstance(other, AuxConstraint) and self.value == other.value

    def __hash__(self):
        return hash((AuxConstraint, self.value))

    def __repr__(self) -> str:
        return f"AuxConstraint({self.value!r})"


class LiteralPin:
    """{code} in an argument slot: the child must be exactly this value."""

    __slots__ = ('code',)

    def __init__(self, code: OpaqueCode):
        self.code = code

    def __eq__(self, other):
        return isinstance(other, LiteralPin) and self.code == other.code

    def __hash__(self):
        return hash((LiteralPin, self.code))

    def __repr__(self) -> str:
        return f"LiteralPin({self.code!r})"


class OpPattern:
    """(Tag arg...): an operator node with positional children."""

    __slots__ = ('tag', 'args')

    def __init__(self, tag: str, args: List['PatternArg']):
        self.tag = tag
        self.args = tuple(args)

    @property
    def children(self) -> List['Pattern']:
        """The slots that consume a positional child (recursive or pinned)."""
        return [a for a in self.args
                if not isinstance(a, (TypeConstraint, AuxConstraint))]

    @property
    def arity(self) -> int:
        return len(self.children)

    def __eq__(self, other):
        return (isinstance(other, OpPattern) and self.tag == other.tag
                and self.args == other.args)

    def __hash__(self):
        return hash((OpPattern, self.tag, self.args))

    def __repr__(self) -> str:
        return f"OpPattern({self.tag!r}, {list(self.args)!r})"


# Type aliases
Pattern = Union[OpPattern, Variable]
PatternArg = Union[OpPattern, Variable, TypeConstraint, AuxConstraint, LiteralPin]


# ============================================================
# Parser
# ============================================================

def _unwrap(tok: str, open_char: str, close_char: str) -> str:
    if not tok.endswith(close_char) or len(tok) < 2:
        raise MalformedExpression(tok, f"unterminated {open_char}{close_char}")
    return tok[1:-1].strip()


def _parse_constraint_value(tok: str, inner: str) -> Union[Variable, OpaqueCode]:
    if not inner:
        raise MalformedExpression(tok, "empty constraint")
    if inner.startswith('{'):
        return OpaqueCode(_unwrap(inner, '{', '}'))
    return Variable(inner)


def parse_arg(tok: str) -> PatternArg:
    """Parse one argument slot of an operator form."""
    c = tok[0]
    if c == '<':
        return TypeConstraint(_parse_constraint_value(tok, _unwrap(tok, '<', '>')))
    if c == '[':
        return AuxConstraint(_parse_constraint_value(tok, _unwrap(tok, '[', ']')))
    if c == '{':
        return LiteralPin(OpaqueCode(_unwrap(tok, '{', '}')))
    return parse_pattern(tok)


def parse_pattern(text: str) -> Pattern:
    """
    Parse a match or result expression.

    Examples:
        parse_pattern("x")            -> Variable("x")
        parse_pattern("(Neg y)")      -> OpPattern("Neg", [Variable("y")])
        parse_pattern("(Const [2])")  -> OpPattern("Const", [AuxConstraint(Variable("2"))])

    Raises MalformedExpression for unbalanced brackets, "()" and
    empty input.
    """
    text = text.strip()
    if not text:
        raise MalformedExpression(text, "empty expression")

    if not text.startswith('('):
        # Balance check only; a bare token is a variable.
        tokens = list(split_tokens(text))
        if len(tokens) != 1:
            raise MalformedExpression(text, "expected a single variable")
        return Variable(text)

    inner = _unwrap(text, '(', ')')
    # Reject "(a) (b)" which looks wrapped but is two forms.
    if len(list(split_tokens(text))) != 1:
        raise MalformedExpression(text, "expected a single expression")
    tokens = list(split_tokens(inner))
    if not tokens:
        raise MalformedExpression(text, "missing operator")
    tag = tokens[0]
    if tag[0] in OPENERS:
        raise MalformedExpression(text, "operator must be a name")
    return OpPattern(tag, [parse_arg(tok) for tok in tokens[1:]])


# ============================================================
# Formatter
# ============================================================

def _format_value(value: Union[Variable, OpaqueCode]) -> str:
    if isinstance(value, OpaqueCode):
        return "{" + value.text + "}"
    return value.name


def format_pattern(pattern: PatternArg) -> str:
    """
    Render a pattern back to rule syntax.

    Example:
        format_pattern(parse_pattern("(Add  x   (Neg y))")) -> "(Add x (Neg y))"
    """
    if isinstance(pattern, Variable):
        return pattern.name
    if isinstance(pattern, TypeConstraint):
        return "<" + _format_value(pattern.value) + ">"
    if isinstance(pattern, AuxConstraint):
        return "[" + _format_value(pattern.value) + "]"
    if isinstance(pattern, LiteralPin):
        return _format_value(pattern.code)
    parts = [pattern.tag] + [format_pattern(a) for a in pattern.args]
    return "(" + " ".join(parts) + ")"
