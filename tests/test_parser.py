import pytest

from nginx_automake.parser import (
    ParseError,
    ParseResult,
    extract_modules,
    parse_nginx_v,
    split_shell_args,
    valid_version,
)

CONFIGURE = (
    "--prefix=/etc/nginx --with-http_ssl_module --with-cc-opt='-g -O2' "
    "--add-module=/opt/echo --without-http_gzip_module --with-http_ssl_module"
)
BUILT_BY = "built by gcc 12.2.0 (Debian 12.2.0-14)"
BUILT_WITH = "built with OpenSSL 3.0.11 19 Sep 2023"
SAMPLE = (
    "nginx version: nginx/1.24.0\n"
    f"{BUILT_BY}\n"
    f"{BUILT_WITH}\n"
    "TLS SNI support enabled\n"
    f"configure arguments: {CONFIGURE}\n"
)


def test_parse_version_and_arguments():
    result = parse_nginx_v(SAMPLE)
    assert result.version == "1.24.0"
    assert result.configure_arguments == CONFIGURE
    assert result.built_by == BUILT_BY
    assert result.built_with == BUILT_WITH


def test_parse_splits_arguments_with_quotes():
    result = parse_nginx_v(SAMPLE)
    assert result.arguments[0] == "--prefix=/etc/nginx"
    assert "--with-cc-opt=-g -O2" in result.arguments
    assert result.arguments.count("--with-http_ssl_module") == 2


def test_parse_modules_are_deduplicated_and_filtered():
    result = parse_nginx_v(SAMPLE)
    assert "--prefix=/etc/nginx" not in result.modules
    assert result.modules.count("--with-http_ssl_module") == 1
    assert "--add-module=/opt/echo" in result.modules
    assert "--without-http_gzip_module" in result.modules
    assert result.modules == extract_modules(result.arguments)


def test_built_by_line_is_not_taken_as_compiler():
    result = parse_nginx_v(SAMPLE)
    assert result.compiler == ""


def test_first_compiler_line_wins():
    output = (
        "nginx version: nginx/1.25.3\n"
        "clang version 15.0.0\n"
        "gcc 12\n"
        "configure arguments: --with-debug\n"
    )
    result = parse_nginx_v(output)
    assert result.compiler == "clang version 15.0.0"
    assert result.arguments == ["--with-debug"]


def test_handles_carriage_returns_and_indentation():
    output = "  nginx version: nginx/1.22.1\r\n\r\n   configure arguments: --with-debug  \r\n"
    result = parse_nginx_v(output)
    assert result.version == "1.22.1"
    assert result.configure_arguments == "--with-debug"


def test_missing_version_raises():
    with pytest.raises(ParseError, match="nginx version"):
        parse_nginx_v("configure arguments: --with-debug\n")


def test_unparseable_version_raises():
    with pytest.raises(ParseError):
        parse_nginx_v("nginx version: openresty\nconfigure arguments: --with-debug\n")


def test_missing_configure_arguments_raises():
    with pytest.raises(ParseError, match="configure arguments"):
        parse_nginx_v("nginx version: nginx/1.24.0\n")


def test_empty_configure_arguments_raises():
    with pytest.raises(ParseError):
        parse_nginx_v("nginx version: nginx/1.24.0\nconfigure arguments:   \n")


def test_to_dict_uses_api_keys():
    data = parse_nginx_v(SAMPLE).to_dict()
    assert set(data) == {
        "version",
        "configureArguments",
        "arguments",
        "modules",
        "builtBy",
        "builtWith",
        "compiler",
    }
    assert data["configureArguments"] == CONFIGURE


def test_to_dict_copies_lists():
    result = ParseResult(version="1.24.0", arguments=["--with-debug"])
    data = result.to_dict()
    data["arguments"].append("--other")
    assert result.arguments == ["--with-debug"]


@pytest.mark.parametrize(
    "version, expected",
    [
        ("1.24.0", True),
        (" 1.24.0 ", True),
        ("1.25", True),
        ("v1.24.0", False),
        ("1", False),
        ("", False),
        ("1.24.0-rc", False),
    ],
)
def test_valid_version(version, expected):
    assert valid_version(version) is expected


@pytest.mark.parametrize(
    "tokens",
    [
        ["--prefix=/usr", "--with-debug"],
        ["a"],
        ["--with-http_v2_module", "--user=www", "--group=www"],
    ],
)
def test_split_round_trip_for_plain_tokens(tokens):
    assert split_shell_args(" ".join(tokens)) == tokens


def test_split_separators_and_empty():
    assert split_shell_args("a\tb\nc   d") == ["a", "b", "c", "d"]
    assert split_shell_args("   ") == []
    assert split_shell_args("") == []


def test_split_escape_and_quotes():
    assert split_shell_args("a\\ b") == ["a b"]
    assert split_shell_args("x='it\"s' y") == ['x=it"s', "y"]
    assert split_shell_args("''") == []


def test_extract_modules_preserves_order():
    args = ["--without-pcre", "--prefix=/x", "--add-dynamic-module=/m", "--without-pcre"]
    assert extract_modules(args) == ["--without-pcre", "--add-dynamic-module=/m"]