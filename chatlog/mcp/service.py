"""The chatlog MCP service: tools and resources answering from the chat database."""

from __future__ import annotations

import json
import threading
from collections.abc import Callable, Mapping
from datetime import datetime, timedelta
from typing import Any, Protocol, TypeVar
from urllib.parse import parse_qs, unquote, urlsplit

from chatlog.mcp.protocol import (
    DEFAULT_CAPABILITIES,
    ERR_INVALID_PARAMS,
    METHOD_INITIALIZE,
    METHOD_PING,
    METHOD_PROMPTS_LIST,
    METHOD_RESOURCES_LIST,
    METHOD_RESOURCES_READ,
    METHOD_RESOURCES_TEMPLATE_LIST,
    METHOD_TOOLS_CALL,
    METHOD_TOOLS_LIST,
    PROTOCOL_VERSION,
    Content,
    InitializeRequest,
    InitializeResponse,
    ReadingResource,
    ReadingResourceContent,
    Request,
    Resource,
    ResourcesReadRequest,
    ResourceTemplate,
    ServerInfo,
    Tool,
    ToolSchema,
    ToolsCallRequest,
    ToolsCallResponse,
)
from chatlog.mcp.transport import MCP, Session

T = TypeVar("T")

SESSION_SUMMARY_WIDTH = 120
NO_MESSAGES_TEXT = "未找到符合查询条件的聊天记录"
CONTACT_HEADER = "UserName,Alias,Remark,NickName\n"
CHAT_ROOM_HEADER = "Name,Remark,NickName,Owner,UserCount\n"

INITIALIZE_RESPONSE = InitializeResponse(
    protocol_version=PROTOCOL_VERSION,
    capabilities=DEFAULT_CAPABILITIES,
    server_info=ServerInfo(name="chatlog", version="0.0.1"),
)

TOOL_CONTACT = Tool(
    name="query_contact",
    description=(
        "查询用户的联系人信息。可以通过姓名、备注名或ID进行查询，返回匹配的联系人列表。"
        "当用户询问某人的联系方式、想了解联系人信息或需要查找特定联系人时使用此工具。"
        "参数为空时，将返回联系人列表"
    ),
    input_schema=ToolSchema(
        type="object",
        properties={
            "keyword": {
                "type": "string",
                "description": "联系人的搜索关键词，可以是姓名、备注名或ID。",
            },
        },
        required=["keyword"],
    ),
)

TOOL_CHAT_ROOM = Tool(
    name="query_chat_room",
    description=(
        "查询用户参与的群聊信息。可以通过群名称、群ID或相关关键词进行查询，返回匹配的群聊列表。"
        "当用户询问群聊信息、想了解某个群的详情或需要查找特定群聊时使用此工具。"
    ),
    input_schema=ToolSchema(
        type="object",
        properties={
            "keyword": {
                "type": "string",
                "description": "群聊的搜索关键词，可以是群名称、群ID或相关描述",
            },
        },
        required=["keyword"],
    ),
)

TOOL_RECENT_CHAT = Tool(
    name="query_recent_chat",
    description=(
        "查询最近会话列表，包括个人聊天和群聊。当用户想了解最近的聊天记录、查看最近联系过的人或群组时使用此工具。"
        "不需要参数，直接返回最近的会话列表。"
    ),
    input_schema=ToolSchema(type="object", properties={}),
)

_CHATLOG_DESCRIPTION = """检索历史聊天记录，可根据时间、对话方、发送者和关键词等条件进行精确查询。当用户需要查找特定信息或想了解与某人/某群的历史交流时使用此工具。

【强制多步查询流程!】
当查询特定话题或特定发送者发言时，必须严格按照以下流程使用，任何偏离都会导致错误的结果：

步骤1: 初步定位相关消息
- 使用keyword参数查找特定话题
- 使用sender参数查找特定发送者的消息
- 使用较宽时间范围初步查询

步骤2: 【必须执行】针对每个关键结果点分别获取上下文
- 必须对步骤1返回的每个时间点T1, T2, T3...分别执行独立查询（时间范围接近的消息可以合并为一个查询）
- 每次独立查询必须移除keyword参数
- 每次独立查询必须移除sender参数
- 每次独立查询使用"Tn前后15-30分钟"的窄范围
- 每次独立查询仅保留talker参数

步骤3: 【必须执行】综合分析所有上下文
- 必须等待所有步骤2的查询结果返回后再进行分析
- 必须综合考虑所有上下文信息后再回答用户

【严格执行规则！】
- 禁止仅凭步骤1的结果直接回答用户
- 禁止在步骤2使用过大的时间范围一次性查询所有上下文
- 禁止跳过步骤2或步骤3
- 必须对每个关键结果点分别执行独立的上下文查询

【执行示例】
正确流程示例:
1. 步骤1: chatlog(time="2023-04-01~2023-04-30", talker="工作群", keyword="项目进度")
   返回结果: 4月5日、4月12日、4月20日有相关消息
2. 步骤2:
   - 查询1: chatlog(time="2023-04-05/09:30~2023-04-05/10:30", talker="工作群") // 注意没有keyword
   - 查询2: chatlog(time="2023-04-12/14:00~2023-04-12/15:00", talker="工作群") // 注意没有keyword
   - 查询3: chatlog(time="2023-04-20/16:00~2023-04-20/17:00", talker="工作群") // 注意没有keyword
3. 步骤3: 综合分析所有上下文后回答用户

错误流程示例:
- 仅执行步骤1后直接回答
- 步骤2使用time="2023-04-01~2023-04-30"一次性查询
- 步骤2仍然保留keyword或sender参数

【自我检查】回答用户前必须自问:
- 我是否对每个关键时间点都执行了独立的上下文查询?
- 我是否在上下文查询中移除了keyword和sender参数?
- 我是否分析了所有上下文后再回答?
- 如果上述任一问题答案为"否"，则必须纠正流程

返回格式："昵称(ID) 时间\\n消息内容\\n昵称(ID) 时间\\n消息内容"
当查询多个Talker时，返回格式为："昵称(ID)\\n[TalkerName(Talker)] 时间\\n消息内容"

重要提示：
1. 当用户询问特定时间段内的聊天记录时，必须使用正确的时间格式，特别是包含小时和分钟的查询
2. 对于"今天下午4点到5点聊了啥"这类查询，正确的时间参数格式应为"2023-04-18/16:00~2023-04-18/17:00"
3. 当用户询问具体群聊中某人的聊天记录时，使用"sender"参数
4. 当用户询问包含特定关键词的聊天记录时，使用"keyword"参数"""

_TIME_DESCRIPTION = """指定查询的时间点或时间范围，格式必须严格遵循以下规则：

【单一时间点格式】
- 精确到日："2023-04-18"或"20230418"
- 精确到分钟（必须包含斜杠和冒号）："2023-04-18/14:30"或"20230418/14:30"（表示2023年4月18日14点30分）

【时间范围格式】（使用"~"分隔起止时间）
- 日期范围："2023-04-01~2023-04-18"
- 同一天的时间段："2023-04-18/14:30~2023-04-18/15:45"
  * 表示2023年4月18日14点30分到15点45分之间

【重要提示】包含小时分钟的格式必须使用斜杠和冒号："/"和":"
正确示例："2023-04-18/16:30"（4月18日下午4点30分）
错误示例："2023-04-18 16:30"、"2023-04-18T16:30"

【其他支持的格式】
- 年份："2023"
- 月份："2023-04"或"202304\""""

_TALKER_DESCRIPTION = """指定对话方（联系人或群组）
- 可使用ID、昵称或备注名
- 多个对话方用","分隔，如："张三,李四,工作群"
- 【重要】这是多步查询中唯一应保留的参数"""

_SENDER_DESCRIPTION = """指定群聊中的发送者
- 仅在查询群聊记录时有效
- 多个发送者用","分隔，如："张三,李四"
- 可使用ID、昵称或备注名
【重要】查询特定发送者的消息时：
  1. 第一步：使用sender参数初步定位多个相关消息时间点
  2. 后续步骤：必须移除sender参数，分别查询每个时间点前后的完整对话
  3. 错误示例：对所有找到的消息一次性查询大范围上下文
  4. 正确示例：对每个时间点T分别执行查询"T前后15-30分钟"（不带sender）"""

_KEYWORD_DESCRIPTION = """搜索内容中的关键词
- 支持正则表达式匹配
- 【重要】查询特定话题时：
  1. 第一步：使用keyword参数初步定位多个相关消息时间点
  2. 后续步骤：必须移除keyword参数，分别查询每个时间点前后的完整对话
  3. 错误示例：对所有找到的关键词消息一次性查询大范围上下文
  4. 正确示例：对每个时间点T分别执行查询"T前后15-30分钟"（不带keyword）"""

TOOL_CHAT_LOG = Tool(
    name="chatlog",
    description=_CHATLOG_DESCRIPTION,
    input_schema=ToolSchema(
        type="object",
        properties={
            "time": {"type": "string", "description": _TIME_DESCRIPTION},
            "talker": {"type": "string", "description": _TALKER_DESCRIPTION},
            "sender": {"type": "string", "description": _SENDER_DESCRIPTION},
            "keyword": {"type": "string", "description": _KEYWORD_DESCRIPTION},
        },
        required=["time", "talker"],
    ),
)

TOOL_CURRENT_TIME = Tool(
    name="current_time",
    description="""获取当前系统时间，返回RFC3339格式的时间字符串（包含用户本地时区信息）。
使用场景：
- 当用户询问"总结今日聊天记录"、"本周都聊了啥"等当前时间问题
- 当用户提及"昨天"、"上周"、"本月"等相对时间概念，需要确定基准时间点
- 需要执行依赖当前时间的计算（如"上个月5号我们有开会吗"）
返回示例：2025-04-18T21:29:00+08:00
注意：此工具不需要任何输入参数，直接调用即可获取当前时间。""",
    input_schema=ToolSchema(type="object", properties={}),
)

TOOLS: tuple[Tool, ...] = (
    TOOL_CONTACT,
    TOOL_CHAT_ROOM,
    TOOL_RECENT_CHAT,
    TOOL_CHAT_LOG,
    TOOL_CURRENT_TIME,
)

RESOURCE_RECENT_CHAT = Resource(
    uri="session://recent",
    name="最近会话",
    description="获取最近的聊天会话列表",
)

RESOURCE_TEMPLATE_CONTACT = ResourceTemplate(
    uri_template="contact://{username}",
    name="联系人信息",
    description="获取指定联系人的详细信息",
)

RESOURCE_TEMPLATE_CHAT_ROOM = ResourceTemplate(
    uri_template="chatroom://{roomid}",
    name="群聊信息",
    description="获取指定群聊的详细信息",
)

RESOURCE_TEMPLATE_CHATLOG = ResourceTemplate(
    uri_template="chatlog://{talker}/{timeframe}?limit,offset",
    name="聊天记录",
    description="获取与特定联系人或群聊的聊天记录",
)

RESOURCES: tuple[Resource, ...] = (RESOURCE_RECENT_CHAT,)
RESOURCE_TEMPLATES: tuple[ResourceTemplate, ...] = (
    RESOURCE_TEMPLATE_CONTACT,
    RESOURCE_TEMPLATE_CHAT_ROOM,
    RESOURCE_TEMPLATE_CHATLOG,
)


class ChatDatabase(Protocol):
    """What the service needs from the chat database.

    Contacts have ``user_name``, ``alias``, ``remark`` and ``nick_name``; chat
    rooms have ``name``, ``remark``, ``nick_name``, ``owner`` and ``users``;
    sessions have ``plain_text(width)``; messages have
    ``plain_text(show_talker, time_format, host)``. The list queries return
    objects with an ``items`` sequence.
    """

    def get_contacts(self, keyword: str, limit: int, offset: int) -> Any: ...

    def get_chat_rooms(self, keyword: str, limit: int, offset: int) -> Any: ...

    def get_sessions(self, keyword: str, limit: int, offset: int) -> Any: ...

    def get_messages(
        self,
        start: datetime,
        end: datetime,
        talker: str,
        sender: str,
        keyword: str,
        limit: int,
        offset: int,
    ) -> list[Any]: ...


TimeRangeOf = Callable[[str], "tuple[datetime, datetime] | None"]
TimeFormatFor = Callable[[datetime, datetime], str]


def parse_params(params: Any, target: type[T]) -> T:
    """Decode JSON-RPC params into ``target`` by way of their JSON form."""
    if params is None:
        raise ValueError("params is nil")
    try:
        data = json.loads(json.dumps(params))
    except (TypeError, ValueError) as err:
        raise ValueError(f"无法编码 params: {err}") from err
    try:
        return target.from_dict(data)  # type: ignore[attr-defined]
    except (TypeError, ValueError) as err:
        raise ValueError(f"无法解码为目标结构体: {err}") from err


def _to_int(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    if isinstance(value, str):
        text = value.strip()
        try:
            return int(text)
        except ValueError:
            try:
                return int(float(text))
            except ValueError:
                return 0
    return 0


def _string_argument(arguments: Mapping[str, Any], name: str) -> str:
    if name not in arguments:
        return ""
    value = arguments[name]
    if not isinstance(value, str):
        raise TypeError(f"argument {name!r} must be a string")
    return value


def _rfc3339(now: datetime) -> str:
    if now.tzinfo is None:
        now = now.astimezone()
    text = now.replace(microsecond=0).isoformat()
    if now.utcoffset() == timedelta(0):
        text = text[: -len("+00:00")] + "Z"
    return text


def _contacts_csv(items: Any) -> str:
    lines = [CONTACT_HEADER]
    lines.extend(
        f"{c.user_name},{c.alias},{c.remark},{c.nick_name}\n" for c in items
    )
    return "".join(lines)


def _chat_rooms_csv(items: Any) -> str:
    lines = [CHAT_ROOM_HEADER]
    lines.extend(
        f"{r.name},{r.remark},{r.nick_name},{r.owner},{len(r.users)}\n" for r in items
    )
    return "".join(lines)


def _sessions_text(items: Any) -> str:
    return "".join(s.plain_text(SESSION_SUMMARY_WIDTH) + "\n" for s in items)


class ChatlogMCPService:
    """Answers MCP requests from a chat database.

    ``time_range_of`` turns a time expression into a (start, end) pair, or
    None if it cannot be parsed; ``time_format_for`` picks the timestamp
    format for messages in that range.
    """

    def __init__(
        self,
        db: ChatDatabase,
        *,
        time_range_of: TimeRangeOf,
        time_format_for: TimeFormatFor,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.db = db
        self._time_range_of = time_range_of
        self._time_format_for = time_format_for
        self._clock = clock or (lambda: datetime.now().astimezone())
        self.mcp: MCP | None = None
        self._worker: threading.Thread | None = None
        self._handlers: dict[str, Callable[[Session, Request], None]] = {
            METHOD_INITIALIZE: self._initialize,
            METHOD_TOOLS_LIST: self._tools_list,
            METHOD_TOOLS_CALL: self._tools_call,
            METHOD_PROMPTS_LIST: self._prompts_list,
            METHOD_RESOURCES_LIST: self._resources_list,
            METHOD_RESOURCES_TEMPLATE_LIST: self._resource_templates_list,
            METHOD_RESOURCES_READ: self._resources_read,
            METHOD_PING: self._ping,
        }

    def start(self) -> None:
        """Create a fresh request queue and start the worker thread."""
        self.mcp = MCP()
        self._worker = threading.Thread(target=self.run_worker, name="mcp-worker", daemon=True)
        self._worker.start()

    def stop(self) -> None:
        """Close the request queue; the worker ends once it is drained."""
        if self.mcp is not None:
            self.mcp.close()

    def run_worker(self) -> None:
        """Process queued requests until the queue is closed and empty."""
        mcp = self.mcp
        if mcp is None:
            raise RuntimeError("service is not started")
        while (item := mcp.next_request()) is not None:
            self.process(item.session, item.request)

    def process(self, session: Session, request: Request) -> None:
        """Answer one request; failures are sent back as error responses."""
        handler = self._handlers.get(request.method)
        if handler is None:
            return
        try:
            handler(session, request)
        except Exception as err:  # every failure is reported to the client
            session.write_error(request, err)

    def _initialize(self, session: Session, request: Request) -> None:
        try:
            init = parse_params(request.params, InitializeRequest)
        except ValueError as err:
            raise ValueError(f"解析初始化参数失败: {err}") from err
        session.save_client_info(init.client_info)
        session.write_response(request, INITIALIZE_RESPONSE)

    def _tools_list(self, session: Session, request: Request) -> None:
        session.write_response(request, {"tools": list(TOOLS)})

    def _prompts_list(self, session: Session, request: Request) -> None:
        session.write_response(request, {"prompts": []})

    def _resources_list(self, session: Session, request: Request) -> None:
        session.write_response(request, {"resources": list(RESOURCES)})

    def _resource_templates_list(self, session: Session, request: Request) -> None:
        session.write_response(request, {"resourceTemplates": list(RESOURCE_TEMPLATES)})

    def _ping(self, session: Session, request: Request) -> None:
        session.write_response(request, {})

    def _query(self, what: str, call: Callable[[], Any]) -> Any:
        try:
            return call()
        except Exception as err:
            raise RuntimeError(f"无法获取{what}: {err}") from err

    def _messages_text(
        self, start: datetime, end: datetime, talker: str, sender: str, keyword: str,
        limit: int, offset: int,
    ) -> str:
        messages = self._query(
            "聊天记录",
            lambda: self.db.get_messages(start, end, talker, sender, keyword, limit, offset),
        )
        parts = [] if messages else [NO_MESSAGES_TEXT]
        time_format = self._time_format_for(start, end)
        show_talker = "," in talker
        parts.extend(m.plain_text(show_talker, time_format, "") + "\n" for m in messages)
        return "".join(parts)

    def _time_range(self, text: str) -> tuple[datetime, datetime]:
        found = self._time_range_of(text)
        if found is None:
            raise ValueError("无法解析时间范围")
        return found

    def _tools_call(self, session: Session, request: Request) -> None:
        try:
            call = parse_params(request.params, ToolsCallRequest)
        except ValueError as err:
            raise ValueError(f"解析工具调用参数失败: {err}") from err

        args: Mapping[str, Any] = call.arguments or {}
        limit = _to_int(args.get("limit"))
        offset = _to_int(args.get("offset"))

        if call.name == "query_contact":
            keyword = _string_argument(args, "keyword")
            found = self._query("联系人列表", lambda: self.db.get_contacts(keyword, limit, offset))
            text = _contacts_csv(found.items)
        elif call.name == "query_chat_room":
            keyword = _string_argument(args, "keyword")
            found = self._query("群聊列表", lambda: self.db.get_chat_rooms(keyword, limit, offset))
            text = _chat_rooms_csv(found.items)
        elif call.name == "query_recent_chat":
            keyword = _string_argument(args, "keyword")
            found = self._query("会话列表", lambda: self.db.get_sessions(keyword, limit, offset))
            text = _sessions_text(found.items)
        elif call.name == "chatlog":
            if call.arguments is None:
                raise ERR_INVALID_PARAMS
            start, end = self._time_range(_string_argument(args, "time"))
            text = self._messages_text(
                start,
                end,
                _string_argument(args, "talker"),
                _string_argument(args, "sender"),
                _string_argument(args, "keyword"),
                limit,
                offset,
            )
        elif call.name == "current_time":
            text = _rfc3339(self._clock())
        else:
            raise ValueError(f"未支持的工具: {call.name}")

        response = ToolsCallResponse(content=[Content(type="text", text=text)], is_error=False)
        session.write_response(request, response)

    def _resources_read(self, session: Session, request: Request) -> None:
        try:
            read = parse_params(request.params, ResourcesReadRequest)
        except ValueError as err:
            raise ValueError(f"解析资源读取参数失败: {err}") from err

        try:
            parts = urlsplit(read.uri)
        except ValueError as err:
            raise ValueError(f"无法解析URI: {err}") from err
        host = unquote(parts.netloc.rpartition("@")[2])

        if parts.scheme == "contact":
            found = self._query("联系人列表", lambda: self.db.get_contacts(host, 0, 0))
            text = _contacts_csv(found.items)
        elif parts.scheme == "chatroom":
            found = self._query("群聊列表", lambda: self.db.get_chat_rooms(host, 0, 0))
            text = _chat_rooms_csv(found.items)
        elif parts.scheme == "session":
            found = self._query("会话列表", lambda: self.db.get_sessions("", 0, 0))
            text = _sessions_text(found.items)
        elif parts.scheme == "chatlog":
            start, end = self._time_range(unquote(parts.path).removeprefix("/"))
            query = parse_qs(parts.query)
            limit = _to_int(query.get("limit", [""])[0])
            offset = _to_int(query.get("offset", [""])[0])
            text = self._messages_text(start, end, host, "", "", limit, offset)
        else:
            raise ValueError(f"不支持的URI: {read.uri}")

        response = ReadingResource(contents=[ReadingResourceContent(uri=read.uri, text=text)])
        session.write_response(request, response)