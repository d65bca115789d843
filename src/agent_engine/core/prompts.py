"""Role messages for the per-role agent endpoints.

Each endpoint names the role it addresses, the dev stage it belongs to, the
request fields it requires, and how those fields become the assistant
message. Messages reference the role's installed prompt file.
"""

from collections.abc import Callable
from dataclasses import dataclass

from agent_engine.core import constants as c


def role_prefix(role: str) -> str:
    return f"@bmad/{role}.mdc"


@dataclass
class AgentEndpoint:
    path: str
    role: str
    dev_stage: str
    required: tuple[str, ...]
    build: Callable[[dict], str]

    def message(self, body: dict) -> str:
        return f"{role_prefix(self.role)} {self.build(body)}"


def _project_brief(b: dict) -> str:
    return (
        "请你为我生成项目简介，再执行市场研究。输出对应的文档到 @docs/analyse/ 目录下。"
        f"我的需求是：\n{b['requirements']}"
    )


def _prd(b: dict) -> str:
    return f"我希望你根据我的需求帮我输出 PRD 文档到 docs/PRD.md。我的需求是：\n{b['requirements']}"


def _ux_standard(b: dict) -> str:
    return (
        f"帮我基于PRD文档 @{b['prdPath']} 和需求输出 UX 规范到 docs/ux/ux-spec.md。"
        f"我的需求是：\n{b['requirements']}"
    )


def _architecture(b: dict) -> str:
    return (
        f"请你基于最新的PRD文档 @{b['prdPath']} 和 UX 规范 @{b['uxSpecPath']}，"
        f"参考架构模板 {b['templateArchDescription']}，输出架构设计文档到 docs/arch/ 目录下。"
    )


def _database(b: dict) -> str:
    return (
        f"请你基于最新的PRD文档 @{b['prdPath']}、架构文档 @{b['archFolder']} "
        f"和用户故事 @{b['storiesFolder']}，输出数据模型设计到 docs/db/ 目录下。"
    )


def _api_definition(b: dict) -> str:
    return (
        f"请你基于最新的PRD文档 @{b['prdPath']}、数据模型 @{b['dbFolder']} "
        f"和用户故事 @{b['storiesFolder']}，输出 API 定义到 docs/api/ 目录下。"
    )


def _epics_and_stories(b: dict) -> str:
    return (
        f"我希望你基于PRD文档 @{b['prdPath']} 和架构文档 @{b['archFolder']}，"
        "拆分史诗和用户故事，输出到 docs/epics/ 和 docs/stories/ 目录下。"
    )


def _implement_story(b: dict) -> str:
    target = f"@{b['epicFile']}"
    if b.get("storyFile"):
        target += f" 中的用户故事 @{b['storyFile']}"
    return (
        "请你始终记得项目的前后端框架及约束：\n"
        f"PRD @{b['prdPath']}，架构 @{b['archFolder']}，数据模型 @{b['dbFolder']}，"
        f"API @{b['apiFolder']}，UX 规范 @{b['uxSpecPath']}。\n"
        f"请实现史诗 {target}，完成后运行测试确认通过。"
    )


def _fix_bug(b: dict) -> str:
    return f"请你修复以下问题，并确认修复后测试通过：\n{b['bugDescription']}"


def _run_test(b: dict) -> str:
    return "请你使用项目现有的测试脚本，完成项目的自动测试过程。包括前端的 lint 和后端的测试过程。"


AGENT_ENDPOINTS = [
    AgentEndpoint("/agent/analyse/project-brief", c.ROLE_ANALYST, c.STAGE_CHECK_REQUIREMENT,
                  ("projectGuid", "requirements"), _project_brief),
    AgentEndpoint("/agent/pm/prd", c.ROLE_PM, c.STAGE_GENERATE_PRD,
                  ("projectGuid", "requirements"), _prd),
    AgentEndpoint("/agent/ux-expert/ux-standard", c.ROLE_UX_EXPERT, c.STAGE_DEFINE_UX_STANDARD,
                  ("projectGuid", "requirements", "prdPath"), _ux_standard),
    AgentEndpoint("/agent/architect/architect", c.ROLE_ARCHITECT, c.STAGE_DESIGN_ARCHITECTURE,
                  ("projectGuid", "prdPath", "uxSpecPath", "templateArchDescription"), _architecture),
    AgentEndpoint("/agent/architect/database", c.ROLE_ARCHITECT, c.STAGE_DEFINE_DATA_MODEL,
                  ("projectGuid", "prdPath", "archFolder", "storiesFolder"), _database),
    AgentEndpoint("/agent/architect/apidefinition", c.ROLE_ARCHITECT, c.STAGE_DEFINE_API,
                  ("projectGuid", "prdPath", "dbFolder", "storiesFolder"), _api_definition),
    AgentEndpoint("/agent/po/epicsandstories", c.ROLE_PO, c.STAGE_PLAN_EPIC_AND_STORY,
                  ("projectGuid", "prdPath", "archFolder"), _epics_and_stories),
    AgentEndpoint("/agent/dev/implstory", c.ROLE_DEV, c.STAGE_DEVELOP_STORY,
                  ("projectGuid", "prdPath", "archFolder", "dbFolder", "apiFolder",
                   "uxSpecPath", "epicFile"), _implement_story),
    AgentEndpoint("/agent/dev/fixbug", c.ROLE_DEV, c.STAGE_FIX_BUG,
                  ("projectGuid", "bugDescription"), _fix_bug),
    AgentEndpoint("/agent/dev/runtest", c.ROLE_DEV, c.STAGE_RUN_TEST,
                  ("projectGuid",), _run_test),
]
