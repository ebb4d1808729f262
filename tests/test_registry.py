import json
import os

import pytest

from nginx_automake.registry import (
    Module,
    ModuleError,
    Registry,
    load_registry,
    module_flag,
    resolve_module_path,
    validate_custom_module,
)

MODULES_JSON = json.dumps(
    [
        {
            "name": "zeta",
            "repo": "https://git.example.com/zeta.git",
            "description": "Zeta module",
            "flag": "add-dynamic-module",
        },
        {"name": "alpha", "repo": "", "description": "Alpha", "flag": "add-module", "path": "alpha"},
    ]
).encode()


def test_load_registry_sorted_list():
    registry = load_registry(MODULES_JSON)
    assert [module.name for module in registry.list()] == ["alpha", "zeta"]
    assert len(registry) == 2


def test_get_returns_module_or_none():
    registry = load_registry(MODULES_JSON)
    zeta = registry.get("zeta")
    assert zeta == Module(
        name="zeta",
        repo="https://git.example.com/zeta.git",
        description="Zeta module",
        flag="add-dynamic-module",
    )
    assert registry.get("missing") is None
    assert "alpha" in registry


def test_later_duplicate_wins():
    data = json.dumps([{"name": "m", "repo": "first"}, {"name": "m", "repo": "second"}])
    registry = load_registry(data)
    assert len(registry) == 1
    assert registry.get("m").repo == "second"


def test_load_null_is_empty():
    assert load_registry("null").list() == []


@pytest.mark.parametrize("data", ["not json", "{}", "[1]", '[{"name": 5}]'])
def test_load_invalid_raises(data):
    with pytest.raises(ModuleError, match="解析模块配置失败"):
        load_registry(data)


def test_to_dict_omits_empty_path():
    assert "path" not in Module(name="a").to_dict()
    assert Module(name="a", path="p").to_dict()["path"] == "p"


def test_registry_from_modules():
    registry = Registry([Module(name="b"), Module(name="a")])
    assert [module.name for module in registry.list()] == ["a", "b"]


def test_validate_custom_module_defaults_flag():
    module = validate_custom_module("echo-nginx", "https://git.example.com/echo.git", "")
    assert module.flag == "add-module"
    assert module.name == "echo-nginx"
    assert module.repo == "https://git.example.com/echo.git"


def test_validate_custom_module_dynamic():
    module = validate_custom_module("m.v2_x", "https://git.example.com/m.git", "add-dynamic-module")
    assert module.flag == "add-dynamic-module"


@pytest.mark.parametrize(
    "name, repo, flag, message",
    [
        ("  ", "https://git.example.com/a.git", "", "模块名称不能为空"),
        ("bad name", "https://git.example.com/a.git", "", "模块名称仅支持"),
        ("ok", " ", "", "模块仓库地址不能为空"),
        ("ok", "http://git.example.com/a.git", "", "仅支持 https"),
        ("ok", "https://git.example.com/a.git", "static", "模块类型仅支持"),
    ],
)
def test_validate_custom_module_errors(name, repo, flag, message):
    with pytest.raises(ModuleError, match=message):
        validate_custom_module(name, repo, flag)


def test_resolve_absolute_path(tmp_path):
    target = str(tmp_path / "abs")
    module = Module(name="m", path=target)
    assert resolve_module_path(module, "/unused", tmp_path) == target


def test_resolve_relative_path(tmp_path):
    module = Module(name="m", path="sub/m")
    result = resolve_module_path(module, tmp_path, "/unused")
    assert result == os.path.join(str(tmp_path), "sub", "m")


def test_resolve_repo_creates_parent(tmp_path):
    module = Module(name="m", repo="https://git.example.com/m.git")
    result = resolve_module_path(module, "/unused", tmp_path)
    assert result == os.path.join(str(tmp_path), "modules", "m")
    assert os.path.isdir(os.path.dirname(result))
    assert not os.path.exists(result)


def test_resolve_without_repo_raises(tmp_path):
    with pytest.raises(ModuleError, match="没有仓库地址"):
        resolve_module_path(Module(name="m"), tmp_path, tmp_path)


def test_module_flag():
    assert module_flag(Module(name="a", flag="add-dynamic-module")) == "--add-dynamic-module"
    assert module_flag(Module(name="a", flag="add-module")) == "--add-module"
    assert module_flag(Module(name="a")) == "--add-module"