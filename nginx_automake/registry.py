"""Registry of preset nginx modules and validation of custom modules."""

from __future__ import annotations

import json
import os
import re
from dataclasses import dataclass

_VALID_MODULE_NAME = re.compile(r"[a-zA-Z0-9._-]+")
_FIELDS = ("name", "repo", "description", "flag", "path")


class ModuleError(ValueError):
    """Raised for invalid module configuration or module requests."""


@dataclass(frozen=True)
class Module:
    """A third-party nginx module that can be compiled in."""

    name: str
    repo: str = ""
    description: str = ""
    flag: str = ""
    path: str = ""

    def to_dict(self) -> dict:
        """Return the JSON representation; ``path`` is left out when empty."""
        data = {key: getattr(self, key) for key in _FIELDS}
        if not self.path:
            del data["path"]
        return data


class Registry:
    """Preset modules keyed by name; later entries replace earlier ones."""

    def __init__(self, modules=()) -> None:
        self._modules = {module.name: module for module in modules}

    def list(self) -> list[Module]:
        """Return all modules sorted by name."""
        return sorted(self._modules.values(), key=lambda module: module.name)

    def get(self, name: str) -> Module | None:
        """Return the module called *name*, or None."""
        return self._modules.get(name)


def load_registry(data: bytes | str) -> Registry:
    """Build a :class:`Registry` from a JSON list of module objects."""
    try:
        items = json.loads(data) or []
        if not isinstance(items, list):
            raise ValueError("expected a list of modules")
        return Registry(
            Module(**{key: item.get(key) or "" for key in _FIELDS}) for item in items
        )
    except (ValueError, TypeError, AttributeError) as exc:
        raise ModuleError(f"解析模块配置失败: {exc}") from exc


def validate_custom_module(name: str, repo: str, flag: str = "") -> Module:
    """Check a user-supplied module and return it as a :class:`Module`."""
    if not name.strip():
        raise ModuleError("模块名称不能为空")
    if not _VALID_MODULE_NAME.fullmatch(name):
        raise ModuleError("模块名称仅支持字母、数字、点、下划线和短横线")
    if not repo.strip():
        raise ModuleError("模块仓库地址不能为空")
    if not repo.startswith("https://"):
        raise ModuleError("仅支持 https Git 仓库地址")
    flag = flag or "add-module"
    if flag not in ("add-module", "add-dynamic-module"):
        raise ModuleError("模块类型仅支持 add-module 或 add-dynamic-module")
    return Module(name=name, repo=repo, flag=flag)


def resolve_module_path(module: Module, modules_dir, work_dir) -> str:
    """Return where *module*'s sources live or will be cloned to."""
    if module.path:
        if os.path.isabs(module.path):
            return module.path
        return os.path.normpath(os.path.join(modules_dir, module.path))
    if not module.repo:
        raise ModuleError(f"模块 {module.name} 没有仓库地址")
    clone_dir = os.path.normpath(os.path.join(work_dir, "modules", module.name))
    os.makedirs(os.path.dirname(clone_dir), mode=0o755, exist_ok=True)
    return clone_dir


def module_flag(module: Module) -> str:
    """Return the configure option that adds *module*."""
    if module.flag == "add-dynamic-module":
        return "--add-dynamic-module"
    return "--add-module"