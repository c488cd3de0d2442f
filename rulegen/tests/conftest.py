"""In-memory term type for running generated rewrite procedures."""

from enum import Enum

import pytest

from rulegen import RuleGenerator


class Op(Enum):
    Add = "Add"
    Sub = "Sub"
    Mul = "Mul"
    Neg = "Neg"
    Const = "Const"
    Copy = "Copy"
    Lsh = "Lsh"
    Load = "Load"
    Arg = "Arg"
    Select = "Select"


TypeInvalid = "invalid"


class Block:
    """Allocates values and remembers every allocation."""

    def __init__(self):
        self.values = []

    def new_value(self, op, type, aux, *args):
        value = Value(op, type, aux, list(args), block=self)
        self.values.append(value)
        return value


class Value:
    def __init__(self, op, type="int", aux=None, args=None, block=None):
        self.op = op
        self.type = type
        self.aux = aux
        self.args = list(args or [])
        self.block = block

    def reset_args(self):
        self.args = []

    def add_arg(self, arg):
        self.args.append(arg)

    def set_type(self):
        # Children decide the type; leaves are ints.
        self.type = self.args[0].type if self.args else "int"

    def __repr__(self):
        return f"Value({self.op.name}, {self.type!r}, {self.aux!r}, {self.args!r})"


def load_procedure(source, fn_name, **names):
    """Execute generated source and return the named procedure.

    Extra keyword arguments become globals of the generated module.
    """
    namespace = {"Op": Op, "TypeInvalid": TypeInvalid, **names}
    exec(compile(source, f"<{fn_name}>", "exec"), namespace)
    return namespace[fn_name]


@pytest.fixture
def block():
    return Block()


@pytest.fixture
def build(block):
    """Build a value in the test block: build(Op.Add, x, y, aux=..., type=...)."""
    def make(op, *args, aux=None, type="int"):
        return Value(op, type, aux, list(args), block=block)
    return make


@pytest.fixture
def compile_rules():
    """Compile rule text into a callable rewrite procedure."""
    def make(text, fn_name="rewrite"):
        source = RuleGenerator.from_text(text, imports=[]).generate(fn_name)
        return load_procedure(source, fn_name)
    return make
