"""引擎属性表：按引擎种类提供命令行模板、文件扩展名与内联脚本。"""

from __future__ import annotations

import re
from dataclasses import dataclass

from automation_orchestrator.domain.enums import EngineKind
from automation_orchestrator.domain.errors import UnsupportedEngineError

_ARG_REF_RE = re.compile(r"\$\(args\[([A-Za-z0-9_]+)\]")
# 形如 Autodesk.AutoCAD+24_1 的标准引擎标识。
_ENGINE_ID_RE = re.compile(r"^[A-Za-z0-9_-]+\.(?P<product>[A-Za-z0-9]+)\+[A-Za-z0-9_.-]+$")


@dataclass(frozen=True, slots=True)
class EngineTemplate:
    """单个引擎种类的静态执行属性。"""
    kind: EngineKind
    command_line: str
    extension: str
    script: str

    def render_command_line(self, bundle_name: str) -> str:
        return self.command_line.format(bundle=bundle_name)


ENGINE_TEMPLATES: dict[EngineKind, EngineTemplate] = {
    EngineKind.max: EngineTemplate(
        kind=EngineKind.max,
        command_line='$(engine.path)\\3dsmaxbatch.exe -sceneFile "$(args[inputFile].path)" $(settings[script].path)',
        extension="max",
        script=(
            'da = dotNetClass("Autodesk.Forge.Sample.DesignAutomation.Max.RuntimeExecute")\n'
            "da.ModifyWindowWidthHeight()\n"
        ),
    ),
    EngineKind.autocad: EngineTemplate(
        kind=EngineKind.autocad,
        command_line=(
            '$(engine.path)\\accoreconsole.exe /i "$(args[inputFile].path)" '
            '/al "$(appbundles[{bundle}].path)" /s $(settings[script].path)'
        ),
        extension="dwg",
        script='(command "GetXrefDetailsToFile")\n',
    ),
    EngineKind.inventor: EngineTemplate(
        kind=EngineKind.inventor,
        command_line='$(engine.path)\\inventorcoreconsole.exe /i "$(args[inputFile].path)" /al "$(appbundles[{bundle}].path)"',
        extension="ipt",
        script="",
    ),
    EngineKind.revit: EngineTemplate(
        kind=EngineKind.revit,
        command_line='$(engine.path)\\revitcoreconsole.exe /i "$(args[inputFile].path)" /al "$(appbundles[{bundle}].path)"',
        extension="rvt",
        script="",
    ),
}


def resolve_engine(engine_id: str) -> EngineTemplate:
    """按引擎标识解析模板。

    标准标识按产品段精确匹配；非标准写法仅在恰好包含一个产品名时接受，
    多个或零个匹配都视为不支持，不依赖表顺序。
    """
    text = (engine_id or "").strip()
    by_token = {kind.value: template for kind, template in ENGINE_TEMPLATES.items()}

    match = _ENGINE_ID_RE.match(text)
    if match and match.group("product") in by_token:
        return by_token[match.group("product")]

    hits = [template for token, template in by_token.items() if token in text]
    if len(hits) == 1:
        return hits[0]
    if len(hits) > 1:
        raise UnsupportedEngineError(
            f"ambiguous engine {engine_id!r}: matches {', '.join(hit.kind.value for hit in hits)}"
        )
    raise UnsupportedEngineError(f"unsupported engine: {engine_id!r}")


def referenced_arguments(command_line: str) -> set[str]:
    """提取命令行中 $(args[...]) 引用的参数名。"""
    return set(_ARG_REF_RE.findall(command_line))
