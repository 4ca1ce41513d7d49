"""Tests for the compiler driver and command line."""

import json

import pytest

from mflow_compiler import (
    SAMPLE_CODE,
    TEST_CASES,
    CodeGenerator,
    CompileState,
    ErrorKind,
    MFlowCompiler,
    check_case,
    compile_source,
    main,
)


@pytest.fixture
def compiler():
    return MFlowCompiler("demo.mflow")


class TestCompile:
    """State machine and structured result."""

    def test_success(self, compiler):
        result = compiler.compile("circle at (200, 200) size 50 color #00FFFF")
        assert result.success
        assert result.state is CompileState.GENERATED
        assert compiler.state is CompileState.GENERATED
        assert result.errors == []
        assert result.output.startswith(CodeGenerator.PREAMBLE)
        assert result.program is compiler.ast

    def test_empty_program(self, compiler):
        result = compiler.compile("")
        assert result.success
        assert result.output == CodeGenerator.PREAMBLE

    def test_syntax_failure_skips_analysis(self, compiler):
        result = compiler.compile("let a = undefined_name\nlet = 2")
        assert result.state is CompileState.SYNTAX_FAILED
        assert result.output is None
        assert [e.kind for e in result.errors] == [ErrorKind.SYNTAX]

    def test_semantic_failure_has_no_output(self, compiler):
        result = compiler.compile("let x = y")
        assert result.state is CompileState.SEMANTIC_FAILED
        assert result.output is None
        assert result.program is None
        assert result.error_messages == ["Semantic error at line 1, column 9: Undefined variable 'y'"]

    def test_syntax_message_format(self):
        result = compile_source("circle at (1,2) color #ABCDEF")
        assert result.error_messages == ['Syntax error at line 1, column 17: Expected "size" keyword']

    def test_compiler_is_reusable(self, compiler):
        assert not compiler.compile("let x = y").success
        assert compiler.compile("let y = 1\nlet x = y").success
        assert compiler.messages.errors == []

    def test_deterministic(self):
        assert compile_source(SAMPLE_CODE).output == compile_source(SAMPLE_CODE).output

    @pytest.mark.parametrize("source", [
        "let c = 1\nif c == 0 {\n}" + " else if c == 1 {\n}" * 600,
        "let a = " + " + ".join(["1"] * 2000),
    ])
    def test_pathological_input_returns_result(self, compiler, source):
        result = compiler.compile(source)
        assert result.state is CompileState.SYNTAX_FAILED
        assert any("Nesting too deep" in m for m in result.error_messages)

    def test_block_recovery_reports_one_error(self, compiler):
        result = compiler.compile("fn f() { let = 1 }\nlet c = 3")
        assert result.error_messages == ["Syntax error at line 1, column 14: Expected variable name"]

    def test_formatted_error_has_caret(self, compiler):
        result = compiler.compile("let a = 1\nlet b = zz")
        text = compiler.messages.format(result.errors[0])
        assert text.splitlines() == [
            "Semantic error at line 2, column 9: Undefined variable 'zz'",
            "    let b = zz",
            "            ^",
        ]

    def test_formatted_error_includes_hint(self, compiler):
        result = compiler.compile("circle at (1, 2) size 3")
        text = compiler.messages.format(result.errors[0])
        assert "hint: circle at (x, y) size r color #RRGGBB" in text

    def test_verbose_prints_phases(self, compiler, capsys):
        compiler.compile("let a = 1", verbose=True)
        out = capsys.readouterr().out
        assert "[PHASE 1: LEXICAL ANALYSIS]" in out
        assert "[PHASE 4: CODE GENERATION]" in out

    def test_verbose_prints_errors(self, compiler, capsys):
        compiler.compile("let a = b", verbose=True)
        out = capsys.readouterr().out
        assert "[ERROR] Semantic error at line 1, column 9" in out
        assert "[PHASE 4" not in out


class TestSelfCheck:
    """The built-in case table."""

    @pytest.mark.parametrize("name,code,should_pass,expected", TEST_CASES, ids=[t[0] for t in TEST_CASES])
    def test_case(self, name, code, should_pass, expected):
        assert check_case(code, should_pass, expected) is None

    def test_unknown_expectation_rejected(self):
        with pytest.raises(ValueError):
            check_case("let a = 1", True, {'nonsense': 1})


class TestCommandLine:
    """argparse entry point."""

    def test_compile_code_to_directory(self, tmp_path):
        assert main(["--code", "let a = 1", "--output-dir", str(tmp_path), "--quiet"]) == 0
        out = (tmp_path / "output.js").read_text(encoding="utf-8")
        assert "var a = 1;" in out
        assert not (tmp_path / "preview.html").exists()

    def test_input_file_with_html_and_ast(self, tmp_path):
        src = tmp_path / "scene.mflow"
        src.write_text(SAMPLE_CODE, encoding="utf-8")
        out_dir = tmp_path / "build"
        assert main(["--input", str(src), "--output-dir", str(out_dir), "--html", "--ast", "-q"]) == 0
        assert 'id="mflow-canvas"' in (out_dir / "preview.html").read_text(encoding="utf-8")
        tree = json.loads((out_dir / "ast.json").read_text(encoding="utf-8"))
        assert tree["kind"] == "Program"
        assert tree["body"][0]["kind"] == "SceneBlock"

    def test_failure_exit_code(self, tmp_path, capsys):
        assert main(["--code", "let x = y", "--output-dir", str(tmp_path), "--quiet"]) == 1
        assert "Undefined variable 'y'" in capsys.readouterr().err
        assert not (tmp_path / "output.js").exists()

    def test_verbose_run(self, tmp_path, capsys):
        assert main(["--code", "rotate", "--output-dir", str(tmp_path)]) == 1
        out = capsys.readouterr().out
        assert "MFLOW COMPILER" in out
        assert "Syntax FAILED" in out

    def test_self_check_flag(self, capsys):
        assert main(["--test"]) == 0
        out = capsys.readouterr().out
        assert "TOTAL:" in out
        assert "Failed tests" not in out
