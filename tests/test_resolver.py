"""Tests for Go source parsing and import resolution."""

from pathlib import Path

import pytest

from pkgview.errors import ConstraintError, ResolutionError
from pkgview.manifest import parse_go_mod_text
from pkgview.resolver import (
    GoSourceResolver,
    escape_path,
    guess_package_name,
    parse_go_header,
)


def _write(root: Path, files: dict[str, str]) -> None:
    for name, content in files.items():
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


# ── Header parsing ────────────────────────────────────────────

class TestParseGoHeader:
    def test_single_import(self):
        header = parse_go_header('package main\n\nimport "fmt"\n\nfunc main() {}\n')
        assert header.package == "main"
        assert header.imports == ("fmt",)

    def test_grouped_imports_with_names(self):
        src = """\
// Package app does things.
package app

import (
	"fmt"
	log "github.com/sirupsen/logrus"
	. "strings"
	_ "embed"
	`raw/path`
)

import "os"

var x = 1
"""
        header = parse_go_header(src)
        assert header.package == "app"
        assert header.imports == (
            "fmt", "github.com/sirupsen/logrus", "strings", "embed", "raw/path", "os",
        )

    def test_comments_are_not_imports(self):
        src = """\
/* import "fake/one" */
package app

// import "fake/two"
import (
	"real" // import "fake/three"
	/* "fake/four" */
)
"""
        assert parse_go_header(src).imports == ("real",)

    def test_stops_at_first_declaration(self):
        src = 'package app\n\nfunc f() { s := "import" }\n\nimport "late"\n'
        assert parse_go_header(src).imports == ()

    def test_semicolon_separated(self):
        assert parse_go_header('package p; import "a"; import ("b"; "c")').imports == ("a", "b", "c")

    def test_go_build_constraint(self):
        src = '//go:build ignore\n\npackage main\n\nimport "os"\n'
        header = parse_go_header(src)
        assert str(header.constraint) == "ignore"
        assert header.imports == ("os",)

    def test_legacy_plus_build_lines(self):
        src = "// +build linux darwin\n// +build amd64\n\npackage p\n"
        assert str(parse_go_header(src).constraint) == "((linux || darwin) && amd64)"

    def test_go_build_wins_over_plus_build(self):
        src = "//go:build windows\n// +build linux\n\npackage p\n"
        assert str(parse_go_header(src).constraint) == "windows"

    def test_plus_build_in_doc_comment_is_not_a_constraint(self):
        src = "// Package p does things.\n// +build linux\npackage p\n"
        assert parse_go_header(src).constraint is None

    def test_malformed_go_build(self):
        with pytest.raises(ConstraintError):
            parse_go_header("//go:build linux &&\n\npackage p\n")

    def test_unconstrained(self):
        assert parse_go_header("package main\n").constraint is None

    def test_no_package_clause(self):
        assert parse_go_header("// nothing here\n").package == ""


# ── Helpers ───────────────────────────────────────────────────

def test_escape_path():
    assert escape_path("github.com/BurntSushi/toml") == "github.com/!burnt!sushi/toml"
    assert escape_path("v1.2.3") == "v1.2.3"


@pytest.mark.parametrize("path,name", [
    ("github.com/sirupsen/logrus", "logrus"),
    ("gopkg.in/yaml.v3", "yaml"),
    ("github.com/go-chi/chi/v5", "chi"),
    ("github.com/mattn/go-isatty", "isatty"),
    ("github.com/foo/bar-baz", "bar_baz"),
])
def test_guess_package_name(path, name):
    assert guess_package_name(path) == name


# ── Resolver ──────────────────────────────────────────────────

GO_MOD = """\
module example.com/app

go 1.21

require (
	github.com/dep/lib v1.2.3
	github.com/BurntSushi/toml v1.3.2
)
"""


@pytest.fixture
def module(tmp_path):
    root = tmp_path / "app"
    _write(root, {
        "go.mod": GO_MOD,
        "main.go": 'package main\n\nimport (\n\t"fmt"\n\t"example.com/app/internal"\n)\n',
        "main_test.go": 'package main\n\nimport "testing"\n',
        "internal/internal.go": 'package internal\n\nimport "os"\n',
        "internal/internal_windows.go": 'package internal\n\nimport "syscall"\n',
        "internal/_scratch.go": 'package scratch\n',
        "mixed/a.go": "package a\n",
        "mixed/b.go": "package b\n",
        "empty/README.md": "nothing\n",
    })
    return root


@pytest.fixture
def goroot(tmp_path):
    root = tmp_path / "goroot"
    _write(root, {
        "src/fmt/print.go": 'package fmt\n\nimport (\n\t"io"\n\t"os"\n)\n',
        "src/os/file.go": "package os\n",
    })
    return root


@pytest.fixture
def resolver(module, goroot, tmp_path):
    mod = parse_go_mod_text(GO_MOD)
    return GoSourceResolver(
        module, mod, goroot=goroot, modcache=tmp_path / "modcache", goos="linux", goarch="amd64",
    )


class TestGoSourceResolver:
    def test_root_package(self, resolver, module):
        info = resolver.resolve(".", module)
        assert info.import_path == "example.com/app"
        assert info.name == "main"
        assert info.directory == module.resolve()
        assert info.goroot is False
        assert info.imports == ("example.com/app/internal", "fmt")

    def test_relative_subpackage(self, resolver, module):
        info = resolver.resolve("./internal", module)
        assert info.import_path == "example.com/app/internal"

    def test_relative_outside_module(self, resolver, module):
        with pytest.raises(ResolutionError, match="outside module root"):
            resolver.resolve("../elsewhere", module)

    def test_local_package_filters_files(self, resolver, module):
        info = resolver.resolve("example.com/app/internal", module)
        assert info.name == "internal"
        # windows file and underscore file are skipped
        assert info.imports == ("os",)

    def test_local_package_for_other_os(self, module, goroot):
        r = GoSourceResolver(module, parse_go_mod_text(GO_MOD), goroot=goroot, goos="windows")
        assert r.resolve("example.com/app/internal", module).imports == ("os", "syscall")

    def test_missing_local_package(self, resolver, module):
        with pytest.raises(ResolutionError) as exc:
            resolver.resolve("example.com/app/broken", module)
        assert exc.value.identifier == "example.com/app/broken"

    def test_no_go_files(self, resolver, module):
        with pytest.raises(ResolutionError, match="no buildable Go source files"):
            resolver.resolve("example.com/app/empty", module)

    def test_multiple_packages(self, resolver, module):
        with pytest.raises(ResolutionError, match="found packages"):
            resolver.resolve("example.com/app/mixed", module)

    def test_std_from_goroot(self, resolver, module):
        info = resolver.resolve("fmt", module)
        assert info.goroot is True
        assert info.name == "fmt"
        assert info.imports == ("io", "os")

    def test_std_by_path_shape_without_goroot(self, module):
        r = GoSourceResolver(module, parse_go_mod_text(GO_MOD), goroot=None)
        info = r.resolve("net/http", module)
        assert info.goroot is True
        assert info.name == "http"

    def test_cgo_pseudo_package(self, resolver, module):
        assert resolver.resolve("C", module).goroot is True

    def test_external_not_downloaded(self, resolver, module):
        info = resolver.resolve("github.com/dep/lib/sub", module)
        assert info.goroot is False
        assert info.name == "sub"
        assert info.directory is None

    def test_external_from_module_cache(self, resolver, module, tmp_path):
        pkg_dir = tmp_path / "modcache" / "github.com" / "!burnt!sushi" / "toml@v1.3.2"
        _write(pkg_dir, {"decode.go": 'package toml\n\nimport "io"\n'})
        info = resolver.resolve("github.com/BurntSushi/toml", module)
        assert info.name == "toml"
        assert info.directory == pkg_dir
        assert info.imports == ("io",)

    def test_undeclared_package(self, resolver, module):
        with pytest.raises(ResolutionError, match="cannot find package"):
            resolver.resolve("github.com/unknown/thing", module)


# ── Build constraints ─────────────────────────────────────────

@pytest.fixture
def tagged(tmp_path):
    root = tmp_path / "tagged"
    _write(root, {
        "go.mod": "module example.com/app\n",
        "main.go": 'package main\n\nimport "fmt"\n',
        "tools.go": '//go:build tools\n\npackage tools\n\nimport _ "golang.org/x/tools/cmd/stringer"\n',
        "win.go": '//go:build windows\n\npackage main\n\nimport "example.com/app/winonly"\n',
        "unix.go": '//go:build unix && !wasm\n\npackage main\n\nimport "os/signal"\n',
        "legacy.go": '// +build darwin,!cgo freebsd\n\npackage main\n\nimport "example.com/app/bsd"\n',
        "new.go": '//go:build go1.21\n\npackage main\n\nimport "slices"\n',
        "future.go": '//go:build go1.999\n\npackage main\n\nimport "example.com/app/future"\n',
    })
    return root


def _tagged_resolver(root, **kwargs):
    return GoSourceResolver(root, parse_go_mod_text("module example.com/app\n"), goroot=None, **kwargs)


class TestBuildConstraints:
    def test_tools_file_is_excluded(self, tagged):
        info = _tagged_resolver(tagged, goos="linux", goarch="amd64").resolve(".", tagged)
        assert info.name == "main"
        assert info.imports == ("fmt", "os/signal", "slices")

    def test_os_tagged_file_on_its_os(self, tagged):
        info = _tagged_resolver(tagged, goos="windows", goarch="amd64").resolve(".", tagged)
        assert info.imports == ("example.com/app/winonly", "fmt", "slices")

    def test_legacy_lines_on_freebsd(self, tagged):
        info = _tagged_resolver(tagged, goos="freebsd", goarch="arm64").resolve(".", tagged)
        assert "example.com/app/bsd" in info.imports
        assert "os/signal" in info.imports

    def test_extra_tags(self, tagged):
        r = _tagged_resolver(tagged, goos="linux", goarch="amd64", tags=["tools"])
        with pytest.raises(ResolutionError, match="found packages main"):
            r.resolve(".", tagged)

    def test_malformed_constraint_fails_the_package(self, tagged):
        (tagged / "bad.go").write_text("//go:build (linux\n\npackage main\n")
        with pytest.raises(ResolutionError, match="bad.go"):
            _tagged_resolver(tagged, goos="linux", goarch="amd64").resolve(".", tagged)

    @pytest.mark.parametrize("goos,tag,expected", [
        ("linux", "linux", True),
        ("linux", "unix", True),
        ("windows", "unix", False),
        ("android", "linux", True),
        ("ios", "darwin", True),
        ("linux", "gc", True),
        ("linux", "go1.1", True),
        ("linux", "go1.999", False),
        ("linux", "cgo", False),
        ("linux", "tools", False),
        ("linux", "amd64", True),
        ("linux", "arm64", False),
    ])
    def test_match_tag(self, tmp_path, goos, tag, expected):
        r = _tagged_resolver(tmp_path, goos=goos, goarch="amd64")
        assert r.match_tag(tag) is expected
