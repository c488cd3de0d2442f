"""Tests for generated rewrite procedures, run against in-memory terms."""

from pathlib import Path

import pytest

from rulegen import (
    RuleGenerator, generate_source, format_source, read_rules,
    MalformedRule, MalformedExpression, GeneratedSyntaxError, DEFAULT_IMPORTS,
)
from conftest import Op, load_procedure


class TestDoubleAdd:
    """(Add x x) -> (Mul x (Const [2]))"""

    RULES = "(Add x x) -> (Mul x (Const [2]))"

    def test_rewrites_same_operand(self, compile_rules, build, block):
        """Identical operands rewrite to a multiply by a new constant."""
        rewrite = compile_rules(self.RULES)
        x = build(Op.Arg)
        v = build(Op.Add, x, x, aux="stale")

        assert rewrite(v) is True
        assert v.op is Op.Mul
        assert v.aux is None
        assert v.args[0] is x
        const = v.args[1]
        assert const.op is Op.Const
        assert const.aux == 2
        assert const.type == "int"
        assert block.values == [const]

    def test_identity_not_structure(self, compile_rules, build):
        """Equal-looking but distinct operands do not match."""
        rewrite = compile_rules(self.RULES)
        a = build(Op.Arg, aux=1)
        b = build(Op.Arg, aux=1)
        v = build(Op.Add, a, b)

        assert rewrite(v) is False
        assert v.op is Op.Add
        assert v.args == [a, b]


class TestSubToAdd:
    """(Sub x y) -> (Add x (Neg y))"""

    RULES = "(Sub x y) -> (Add x (Neg y))"

    def test_rewrite(self, compile_rules, build, block):
        """Distinct operands both bind; one new node is allocated."""
        rewrite = compile_rules(self.RULES)
        x = build(Op.Arg)
        y = build(Op.Arg, type="float")
        v = build(Op.Sub, x, y)

        assert rewrite(v) is True
        assert v.op is Op.Add
        assert v.args[0] is x
        neg = v.args[1]
        assert neg.op is Op.Neg
        assert neg.args == [y]
        assert neg.type == "float"
        assert v.type == "int"
        assert block.values == [neg]

    def test_same_operand_still_matches(self, compile_rules, build):
        """Different names do not require different terms."""
        rewrite = compile_rules(self.RULES)
        x = build(Op.Arg)
        v = build(Op.Sub, x, x)
        assert rewrite(v) is True
        assert v.args[0] is x
        assert v.args[1].args[0] is x


class TestFirstMatchWins:
    """Rules in a group are tried in file order."""

    RULES = """
        (Neg (Neg x)) -> (Copy x)
        (Neg x) && x.op == Op.Const -> (Const [{-x.aux}])
        (Neg x) && probe(x) -> (Sub (Const [{0}]) x)
    """

    def _compile(self, calls):
        def probe(x):
            calls.append(x)
            return True
        source = RuleGenerator.from_text(self.RULES, imports=[]).generate("rewrite")
        return load_procedure(source, "rewrite", probe=probe)

    def test_first_rule(self, build):
        calls = []
        rewrite = self._compile(calls)
        a = build(Op.Arg)
        v = build(Op.Neg, build(Op.Neg, a))
        assert rewrite(v) is True
        assert v.op is Op.Copy
        assert v.args == [a]
        assert calls == []

    def test_later_rule_not_evaluated(self, build):
        """Once the second rule applies, the third is never tried."""
        calls = []
        rewrite = self._compile(calls)
        v = build(Op.Neg, build(Op.Const, aux=3))
        assert rewrite(v) is True
        assert v.op is Op.Const
        assert v.aux == -3
        assert v.args == []
        assert calls == []

    def test_falls_through_to_last(self, build, block):
        calls = []
        rewrite = self._compile(calls)
        a = build(Op.Arg)
        v = build(Op.Neg, a)
        assert rewrite(v) is True
        assert calls == [a]
        assert v.op is Op.Sub
        assert v.args[0].op is Op.Const
        assert v.args[0].aux == 0
        assert v.args[1] is a


class TestNoRuleApplied:
    """Procedures report False when nothing matches."""

    def test_empty_rules(self, compile_rules, build):
        """No rules: nothing ever applies."""
        rewrite = compile_rules("")
        for op in Op:
            assert rewrite(build(op)) is False

    def test_comments_only(self, compile_rules, build):
        rewrite = compile_rules("// nothing\n\n   // still nothing\n")
        assert rewrite(build(Op.Add)) is False

    def test_other_operator(self, compile_rules, build):
        """A term whose operator has no group is left alone."""
        rewrite = compile_rules("(Add x x) -> (Mul x (Const [2]))")
        x = build(Op.Arg)
        v = build(Op.Sub, x, x)
        assert rewrite(v) is False
        assert v.op is Op.Sub

    def test_arity_mismatch(self, compile_rules, build):
        """Fewer children than the pattern falls through instead of crashing."""
        rewrite = compile_rules("(Select x y z) -> (Copy x)")
        v = build(Op.Select, build(Op.Arg), build(Op.Arg))
        assert rewrite(v) is False
        assert len(v.args) == 2

    def test_nested_arity_mismatch(self, compile_rules, build):
        rewrite = compile_rules("(Add (Neg x y) z) -> (Copy z)")
        v = build(Op.Add, build(Op.Neg, build(Op.Arg)), build(Op.Arg))
        assert rewrite(v) is False

    def test_extra_children(self, compile_rules, build):
        """More children than the pattern is also a mismatch."""
        rewrite = compile_rules("(Select x) -> (Copy x)")
        v = build(Op.Select, build(Op.Arg), build(Op.Arg))
        assert rewrite(v) is False


class TestConstraints:
    """Type, aux and literal constraints at run time."""

    def test_aux_variable_equality(self, compile_rules, build):
        """Repeated aux variables compare values."""
        rewrite = compile_rules("(Add (Const [c]) (Const [c])) -> (Const [{c * 2}])")
        v = build(Op.Add, build(Op.Const, aux=3), build(Op.Const, aux=3))
        assert rewrite(v) is True
        assert v.op is Op.Const
        assert v.aux == 6
        assert v.args == []

        v = build(Op.Add, build(Op.Const, aux=3), build(Op.Const, aux=4))
        assert rewrite(v) is False

    def test_type_condition(self, compile_rules, build):
        """Type variables can be used in the condition."""
        rewrite = compile_rules('(Add <t> x y) && t == "float" -> (Mul <t> x y)')
        v = build(Op.Add, build(Op.Arg), build(Op.Arg), type="float")
        assert rewrite(v) is True
        assert v.op is Op.Mul
        assert v.type == "float"

        v = build(Op.Add, build(Op.Arg), build(Op.Arg))
        assert rewrite(v) is False

    def test_type_and_variable_with_same_name(self, compile_rules, build):
        """<x> and x are different bindings."""
        rewrite = compile_rules("(Add <x> x x) -> (Copy <x> x)")
        a = build(Op.Arg)
        v = build(Op.Add, a, a, type="float")
        assert rewrite(v) is True
        assert v.type == "float"
        assert v.args == [a]

    def test_literal_pin(self, build):
        """A pinned child must be that exact object."""
        nil = object()
        source = RuleGenerator.from_text(
            "(Select {NIL} x) -> (Copy x)", imports=[]).generate("rewrite")
        rewrite = load_procedure(source, "rewrite", NIL=nil)

        a = build(Op.Arg)
        assert rewrite(build(Op.Select, nil, a)) is True
        assert rewrite(build(Op.Select, build(Op.Arg), a)) is False

    def test_literal_in_result(self, compile_rules, build):
        rewrite = compile_rules("(Neg x) -> (Select x {x})")
        a = build(Op.Arg)
        v = build(Op.Neg, a)
        assert rewrite(v) is True
        assert v.args == [a, a]


class TestVariableNames:
    """Rule variables whose names the generated code also uses."""

    def test_variable_named_like_allocation(self, compile_rules, build):
        """A variable called v0 keeps the matched child."""
        rewrite = compile_rules("(Sub v0 y) -> (Add (Neg y) v0)")
        x = build(Op.Arg)
        y = build(Op.Arg)
        v = build(Op.Sub, x, y)

        assert rewrite(v) is True
        assert v.op is Op.Add
        neg = v.args[0]
        assert neg.op is Op.Neg
        assert neg.args == [y]
        assert v.args[1] is x

    def test_variable_named_v(self, compile_rules, build):
        rewrite = compile_rules("(Neg v) -> (Copy v)")
        a = build(Op.Arg)
        v = build(Op.Neg, a)
        assert rewrite(v) is True
        assert v.op is Op.Copy
        assert v.args == [a]

    def test_variable_named_len(self, compile_rules, build):
        """The arity guard still works when a variable is called len."""
        rewrite = compile_rules("(Neg len) -> (Copy len)")
        a = build(Op.Arg)
        v = build(Op.Neg, a)
        assert rewrite(v) is True
        assert v.args == [a]

        v = build(Op.Neg, a, a)
        assert rewrite(v) is False
        assert v.op is Op.Neg

    def test_suffixed_name_already_used(self, compile_rules, build):
        """<x> does not overwrite a variable literally called x_type."""
        rewrite = compile_rules("(Add x_type x <x>) -> (Copy x_type)")
        a = build(Op.Arg)
        b = build(Op.Arg)
        v = build(Op.Add, a, b, type="float")
        assert rewrite(v) is True
        assert v.op is Op.Copy
        assert v.args == [a]
        assert v.type == "float"

    def test_variable_named_like_operator_namespace(self, compile_rules, build):
        rewrite = compile_rules("(Neg (Neg Op)) -> (Copy Op)")
        a = build(Op.Arg)
        v = build(Op.Neg, build(Op.Neg, a))
        assert rewrite(v) is True
        assert v.op is Op.Copy
        assert v.args == [a]


class TestGeneratedSource:
    """Tests for the shape of the generated module."""

    RULES = """
        (Sub x y) -> (Add x (Neg y))
        (Add x x) -> (Mul x (Const [2]))
    """

    def test_header_and_imports(self):
        source = RuleGenerator.from_text(self.RULES).generate("rewrite_generic")
        lines = source.splitlines()
        assert lines[0] == "# autogenerated from <text>: do not edit!"
        assert lines[1] == "# generated with: rulegen <text> rewrite_generic"
        assert lines[2] == DEFAULT_IMPORTS[0]
        assert "def rewrite_generic(v):" in source

    def test_groups_sorted(self):
        """Groups are emitted in tag order regardless of file order."""
        source = RuleGenerator.from_text(self.RULES).generate("rw")
        assert source.index("if v.op == Op.Add:") < source.index("elif v.op == Op.Sub:")

    def test_rule_comments(self):
        source = RuleGenerator.from_text(self.RULES).generate("rw")
        assert "    # match: (Add x x)\n" in source
        assert "    # cond:\n" in source
        assert "    # result: (Mul x (Const [2]))\n" in source

    def test_helper_per_rule(self):
        source = RuleGenerator.from_text(self.RULES).generate("rw")
        assert "def _rw_rule0(v):" in source
        assert "def _rw_rule1(v):" in source
        assert "def _rw_rule2(v):" not in source

    def test_condition_guard(self):
        source = RuleGenerator.from_text("(Neg x) && x.aux > 0 -> (Copy x)").generate("rw")
        assert "if not (x.aux > 0):\n        return False\n" in source

    def test_reproducible(self):
        a = RuleGenerator.from_text(self.RULES).generate("rw")
        b = RuleGenerator.from_text(self.RULES).generate("rw")
        assert a == b

    def test_empty_procedure(self):
        source = RuleGenerator.from_text("", imports=[]).generate("rw")
        assert "if v.op" not in source
        assert source.rstrip().endswith("return False")

    def test_generate_source_from_rule_set(self):
        """The emitter works directly on a RuleSet."""
        source = generate_source(read_rules(self.RULES), "rw", imports=[])
        assert "def rw(v):" in source
        assert format_source(source) == format_source(format_source(source))


class TestGenerationErrors:
    """Errors abort generation."""

    def test_malformed_rule(self):
        gen = RuleGenerator.from_text("(Add x y) (Add y x)")
        with pytest.raises(MalformedRule):
            gen.generate("rw")

    def test_malformed_expression(self):
        gen = RuleGenerator.from_text("(Add x y -> x")
        with pytest.raises(MalformedExpression) as exc:
            gen.generate("rw")
        assert exc.value.lineno == 1

    def test_bad_condition(self):
        """A condition that is not valid Python is caught by the validator."""
        gen = RuleGenerator.from_text("(Add x y) && x == -> (Copy x)")
        with pytest.raises(GeneratedSyntaxError):
            gen.generate("rw")

    def test_bad_function_name(self):
        with pytest.raises(GeneratedSyntaxError):
            RuleGenerator.from_text("(Neg x) -> (Copy x)").generate("not-a-name")


class TestFormatSource:
    """Tests for the formatter/validator."""

    def test_tidies(self):
        text = "x = 1   \n\n\n\n\n\ny = 2\n\n\n"
        assert format_source(text) == "x = 1\n\n\ny = 2\n"

    def test_syntax_error(self):
        with pytest.raises(GeneratedSyntaxError) as exc:
            format_source("def f(:\n    pass\n")
        assert exc.value.lineno == 1


class TestRuleGenerator:
    """Tests for the RuleGenerator API."""

    def test_len_and_contains(self):
        gen = RuleGenerator.from_text(TestGeneratedSource.RULES)
        assert len(gen) == 2
        assert "Add" in gen
        assert "Mul" not in gen
        assert gen.groups() == ["Add", "Sub"]

    def test_load_text_appends(self):
        """Later loads extend groups after earlier rules."""
        gen = (RuleGenerator()
               .load_text("(Neg (Neg x)) -> (Copy x)")
               .load_text("(Neg x) -> (Sub (Const [{0}]) x)"))
        group = gen.rule_set()["Neg"]
        assert [r.text for r in group] == [
            "(Neg (Neg x)) -> (Copy x)",
            "(Neg x) -> (Sub (Const [{0}]) x)",
        ]

    def test_from_file(self, tmp_path):
        path = tmp_path / "generic.rules"
        path.write_text(TestGeneratedSource.RULES)
        gen = RuleGenerator.from_file(path)
        assert len(gen) == 2
        assert f"# autogenerated from {path}: do not edit!" in gen.generate("rw")

    def test_list_rules(self):
        gen = RuleGenerator.from_text("(Neg (Neg x)) -> (Copy x)\n(Add x x) -> (Copy x)")
        assert gen.list_rules() == [
            "Add (1 rules)",
            "  2: (Add x x) -> (Copy x)",
            "Neg (1 rules)",
            "  1: (Neg (Neg x)) -> (Copy x)",
        ]

    def test_options(self):
        gen = RuleGenerator.from_text(
            "(Sub x y) -> (Add x (Neg y))",
            op_prefix="Opcode.", imports=["from ir import *"],
            invalid_type="INVALID", allocator="v.func.alloc")
        source = gen.generate("rw")
        assert "from ir import *" in source
        assert "if v.op == Opcode.Sub:" in source
        assert "v0 = v.func.alloc(Opcode.Neg, INVALID, None)" in source

    def test_repr(self):
        assert repr(RuleGenerator()).startswith("RuleGenerator(0 rules")

    def test_example_rules(self, build):
        """The bundled example rules compile and run."""
        path = Path(__file__).resolve().parents[2] / "examples" / "generic.rules"
        source = RuleGenerator.from_file(path, imports=[]).generate("rewrite_generic")
        rewrite = load_procedure(source, "rewrite_generic")

        x = build(Op.Arg)
        v = build(Op.Lsh, x, build(Op.Const, aux=3))
        assert rewrite(v) is True
        assert v.op is Op.Mul
        assert v.args[1].aux == 8

        v = build(Op.Lsh, x, build(Op.Const, aux=70))
        assert rewrite(v) is True
        assert v.op is Op.Const
        assert v.aux == 0
