"""Unit tests for scope checking."""

import pytest

from mflow_compiler import (
    ErrorKind,
    InternalCompilerError,
    Program,
    SemanticAnalyzer,
    SourceLocation,
    Symbol,
    SymbolKind,
    SymbolTable,
    analyze,
    parse,
    tokenize,
)


def check(source):
    program, syntax_errors = parse(tokenize(source))
    assert syntax_errors == [], [str(e) for e in syntax_errors]
    return analyze(program)


def texts(source):
    return [e.text for e in check(source)]


class TestSymbolTable:
    """Scope frame stack."""

    def test_declare_and_lookup(self):
        table = SymbolTable()
        table.enter()
        loc = SourceLocation(1, 1)
        assert table.declare(Symbol("a", SymbolKind.VARIABLE, loc)) is None
        assert table.lookup("a").kind is SymbolKind.VARIABLE
        assert table.lookup("b") is None

    def test_duplicate_returns_previous(self):
        table = SymbolTable()
        table.enter()
        first = Symbol("a", SymbolKind.VARIABLE, SourceLocation(1, 1))
        table.declare(first)
        assert table.declare(Symbol("a", SymbolKind.VARIABLE, SourceLocation(2, 1))) is first

    def test_inner_frame_shadows_and_pops(self):
        table = SymbolTable()
        table.enter()
        table.declare(Symbol("a", SymbolKind.VARIABLE, SourceLocation(1, 1)))
        table.enter()
        assert table.declare(Symbol("a", SymbolKind.PARAMETER, SourceLocation(2, 1))) is None
        assert table.lookup("a").kind is SymbolKind.PARAMETER
        assert table.depth == 2
        table.exit()
        assert table.lookup("a").kind is SymbolKind.VARIABLE


class TestUndefined:
    """Identifier resolution."""

    def test_undefined_variable(self):
        errors = check("let x = y")
        assert len(errors) == 1
        assert errors[0].kind is ErrorKind.SEMANTIC
        assert errors[0].text == "Undefined variable 'y'"
        assert (errors[0].location.line, errors[0].location.column) == (1, 9)

    def test_initializer_cannot_see_itself(self):
        assert texts("let x = x") == ["Undefined variable 'x'"]

    def test_all_errors_are_collected(self):
        assert texts("let a = b\ncircle at (c, 1) size d color e") == [
            "Undefined variable 'b'",
            "Undefined variable 'c'",
            "Undefined variable 'd'",
            "Undefined variable 'e'",
        ]

    def test_use_before_let(self):
        assert texts("let b = a\nlet a = 1") == ["Undefined variable 'a'"]

    def test_call_arguments_checked(self):
        assert texts("fn f(a) { return a }\nf(nope)") == ["Undefined variable 'nope'"]

    def test_undefined_callee(self):
        assert texts("missing(1)") == ["Undefined variable 'missing'"]

    def test_valid_program_has_no_errors(self):
        assert check("let r = 10\nrepeat 3 { circle at (r, r) size r color #fff }") == []


class TestScopes:
    """Frame rules for functions, scenes and blocks."""

    def test_duplicate_in_function(self):
        errors = check("fn f(){ let a = 1 let a = 2 }")
        assert len(errors) == 1
        assert errors[0].text == "Variable 'a' is already declared in this scope"
        assert "line 1, column 13" in errors[0].hint

    def test_duplicate_global(self):
        assert texts("let a = 1\nlet a = 2") == ["Variable 'a' is already declared in this scope"]

    def test_function_body_may_shadow(self):
        assert check("let a = 1\nfn f() {\n  let a = 2\n  return a\n}") == []

    def test_parameter_duplicate(self):
        assert texts("fn f(a, a) { }") == ["Parameter 'a' is already declared in this scope"]

    def test_let_may_not_redeclare_parameter(self):
        assert texts("fn f(a) { let a = 1 }") == ["Variable 'a' is already declared in this scope"]

    def test_parameters_not_visible_outside(self):
        assert texts("fn f(p) { return p }\nlet q = p") == ["Undefined variable 'p'"]

    def test_if_body_uses_enclosing_frame(self):
        assert check("fn f() {\n  if 1 == 1 {\n    let a = 1\n  }\n  return a\n}") == []

    def test_if_body_redeclaration_clashes(self):
        assert texts("let a = 1\nif a { let a = 2 }") == ["Variable 'a' is already declared in this scope"]

    def test_repeat_body_uses_enclosing_frame(self):
        errors = check("let x = 100\nrepeat 5 {\n  let x = x + 80\n}")
        assert [e.text for e in errors] == ["Variable 'x' is already declared in this scope"]

    def test_scene_has_own_frame(self):
        assert texts("scene s {\n  let a = 1\n}\nlet b = a") == ["Undefined variable 'a'"]

    def test_scene_reads_globals(self):
        assert check("let a = 1\nscene s {\n  let b = a\n}") == []

    def test_function_forward_reference(self):
        assert check("let v = twice(2)\nfn twice(n) { return n + n }") == []

    def test_recursion(self):
        assert check("fn f(n) { return f(n - 1) }") == []

    def test_duplicate_function(self):
        assert texts("fn f() { }\nfn f() { }") == ["Function 'f' is already declared in this scope"]

    def test_animate_is_not_checked(self):
        assert check("animate { move unknown left rotate other }") == []


class TestAnalyzer:
    """Analyzer object behaviour."""

    def test_reusable(self):
        analyzer = SemanticAnalyzer()
        program, _ = parse(tokenize("let a = 1"))
        assert analyzer.analyze(program) == []
        assert analyzer.analyze(program) == []

    def test_does_not_mutate_tree(self):
        program, _ = parse(tokenize("let a = 1\nlet b = a + 2"))
        before = repr(program)
        analyze(program)
        assert repr(program) == before

    def test_unknown_statement_is_internal_error(self):
        program = Program([object()], SourceLocation(1, 1))
        with pytest.raises(InternalCompilerError) as exc:
            analyze(program)
        assert exc.value.message.kind is ErrorKind.INTERNAL
