"""Unit tests for engines.script.sandbox."""

import pytest

from scriptstep.engines.script.sandbox import (
    SCRIPT_ENTRYPOINT,
    ModulePolicy,
    SinkPrinter,
    build_restricted_globals,
    compile_script,
)


def _run(source: str, context: dict | None = None, **kwargs: object) -> object:
    g = build_restricted_globals(context or {}, **kwargs)  # type: ignore[arg-type]
    exec(compile_script(source), g)
    return g[SCRIPT_ENTRYPOINT]()


class TestCompileScript:
    def test_compile_simple(self) -> None:
        assert compile_script("x = 1") is not None

    def test_top_level_return(self) -> None:
        assert _run("return [x * 2 for x in [1, 2, 3]]") == [2, 4, 6]

    def test_empty_source_returns_none(self) -> None:
        assert _run("") is None

    def test_syntax_error_has_line(self) -> None:
        with pytest.raises(SyntaxError) as exc:
            compile_script("x = 1\ndef f(  ")
        assert exc.value.lineno == 2

    def test_restricted_name_rejected_with_line(self) -> None:
        with pytest.raises(SyntaxError) as exc:
            compile_script("a = 1\n_secret = 2")
        assert exc.value.lineno == 2

    def test_dunder_attribute_rejected(self) -> None:
        with pytest.raises(SyntaxError):
            compile_script("return ().__class__")


class TestBuildRestrictedGlobals:
    def test_includes_builtins_and_guards(self) -> None:
        g = build_restricted_globals({})
        for name in ("__builtins__", "_getattr_", "_getiter_", "_write_", "_print_", "json", "datetime"):
            assert name in g

    def test_merges_context(self) -> None:
        g = build_restricted_globals({"items": [1], "params": "p"})
        assert g["items"] == [1]
        assert g["params"] == "p"

    def test_json_exposes_only_dumps_and_loads(self) -> None:
        assert _run("return json.loads(json.dumps({'a': 1}))") == {"a": 1}
        assert sorted(vars(build_restricted_globals({})["json"])) == ["dumps", "loads"]
        assert _run("return json.codecs") is None

    def test_augmented_assignment(self) -> None:
        assert _run("total = 0\nfor n in [1, 2, 3]:\n    total += n\nreturn total") == 6

    def test_item_assignment_on_dict(self) -> None:
        assert _run("d = {}\nd['k'] = 'v'\nreturn d") == {"k": "v"}

    def test_open_blocked(self) -> None:
        with pytest.raises(NameError):
            _run("return open('/etc/passwd')")


class TestPrintRedirect:
    def test_print_goes_to_sink(self) -> None:
        events: list[tuple[str, str]] = []
        _run("print('a', 1)\nprint('b', sep='-')", log_sink=lambda lvl, msg: events.append((lvl, msg)))
        assert events == [("info", "a 1"), ("info", "b")]

    def test_print_without_sink_is_dropped(self, capsys: pytest.CaptureFixture[str]) -> None:
        _run("print('hidden')")
        assert capsys.readouterr().out == ""

    def test_printer_collects_text(self) -> None:
        p = SinkPrinter(None)
        p._call_print("x", "y", sep=",")
        assert p() == "x,y\n"


class TestModulePolicy:
    def test_deny_by_default(self) -> None:
        with pytest.raises(ImportError, match="not allowed"):
            _run("import math")

    def test_allowed_builtin(self) -> None:
        policy = ModulePolicy(builtin=frozenset({"math"}))
        assert _run("import math\nreturn math.floor(2.7)", module_policy=policy) == 2

    def test_builtin_wildcard(self) -> None:
        policy = ModulePolicy(builtin=frozenset({"*"}))
        assert policy.allows("os.path")
        assert not policy.allows("requests")

    def test_external_without_transitive(self) -> None:
        policy = ModulePolicy(external=frozenset({"pkg"}))
        assert policy.allows("pkg")
        assert not policy.allows("pkg.sub")
        assert not policy.allows("math")

    def test_external_with_transitive(self) -> None:
        policy = ModulePolicy(external=frozenset({"pkg"}), allow_transitive=True)
        assert policy.allows("pkg.sub")
        assert not policy.allows("other")

    def test_external_wildcard(self) -> None:
        assert ModulePolicy(external=frozenset({"*"})).allows("anything.at.all")

    def test_from_settings(self) -> None:
        from tests.utils.script import make_settings

        s = make_settings(
            SCRIPT_ALLOWED_BUILTIN_MODULES="math, json",
            SCRIPT_ALLOWED_EXTERNAL_MODULES="pkg",
            SCRIPT_ALLOW_TRANSITIVE_IMPORTS=True,
        )
        policy = ModulePolicy.from_settings(s)
        assert policy.builtin == frozenset({"math", "json"})
        assert policy.external == frozenset({"pkg"})
        assert policy.allow_transitive is True
