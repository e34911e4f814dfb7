"""Topic discovery via ``ros2 topic list -t`` and ``ros2 topic info -v``."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any

from .constants import ROS2_NOT_FOUND_HINT
from .ros2_cli import COMMAND_TIMEOUT_EXIT_CODE, CommandRunner, is_command_not_found

LOGGER = logging.getLogger(__name__)

_TOPIC_LINE_RE = re.compile(r"^(\S+)\s+\[(.+)\]$")
_PUBLISHER_COUNT_RE = re.compile(r"^Publisher count\s*:", re.IGNORECASE)
_SUBSCRIBER_COUNT_RE = re.compile(r"^(Subscription|Subscriber) count\s*:", re.IGNORECASE)
_OTHER_COUNT_RE = re.compile(r"^(Service|Action) (server|client) count\s*:", re.IGNORECASE)
_NODE_NAME_RE = re.compile(r"^Node name\s*:\s*(.+)$", re.IGNORECASE)
_NODE_NAMESPACE_RE = re.compile(r"^Node namespace\s*:\s*(.+)$", re.IGNORECASE)

PARTICIPANT_CONCURRENCY = 4


class TopicDiscoveryError(RuntimeError):
    """``ros2`` could not be queried; the message is meant for users."""


@dataclass(slots=True)
class Topic:
    name: str
    type: str | None = None
    publishers: list[str] = field(default_factory=list)
    subscribers: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "publishers": list(self.publishers),
            "subscribers": list(self.subscribers),
        }


def parse_topic_list(stdout: str) -> list[Topic]:
    """Parse ``ros2 topic list -t`` output, sorted by name."""
    topics: list[Topic] = []
    for raw in stdout.splitlines():
        line = raw.strip()
        if not line:
            continue
        match = _TOPIC_LINE_RE.match(line)
        if match:
            topics.append(Topic(name=match.group(1), type=match.group(2).strip()))
        else:
            topics.append(Topic(name=line))
    topics.sort(key=lambda topic: topic.name)
    return topics


def normalize_topic_name(name: str) -> str:
    """Strip *name* and root it at ``/``; blank input gives ``""``."""
    name = (name or "").strip()
    if not name:
        return ""
    return name if name.startswith("/") else f"/{name}"


def normalize_node_full_name(name: str, namespace: str | None = None) -> str:
    name = (name or "").strip()
    if not name:
        return ""
    if name.startswith("/"):
        return name
    ns = (namespace or "").strip()
    if not ns or ns == "/":
        return "/" + name.lstrip("/")
    return ns.rstrip("/") + "/" + name.lstrip("/")


def parse_topic_info_verbose(stdout: str) -> tuple[list[str], list[str]]:
    """Return ``(publishers, subscribers)`` node names from ``topic info -v``."""
    publishers: list[str] = []
    subscribers: list[str] = []
    section: list[str] | None = None
    pending_name: str | None = None

    def _push(name: str, namespace: str | None) -> None:
        full = normalize_node_full_name(name, namespace)
        if full and section is not None and full not in section:
            section.append(full)

    for raw in stdout.splitlines():
        line = raw.strip()
        if not line:
            continue
        if _PUBLISHER_COUNT_RE.match(line):
            section, pending_name = publishers, None
            continue
        if _SUBSCRIBER_COUNT_RE.match(line):
            section, pending_name = subscribers, None
            continue
        if _OTHER_COUNT_RE.match(line):
            section, pending_name = None, None
            continue
        if section is None:
            continue
        if match := _NODE_NAME_RE.match(line):
            pending_name = match.group(1).strip()
            if pending_name.startswith("/"):
                _push(pending_name, None)
                pending_name = None
            continue
        if match := _NODE_NAMESPACE_RE.match(line):
            if pending_name:
                _push(pending_name, match.group(1).strip())
                pending_name = None
    if pending_name:
        _push(pending_name, None)
    return publishers, subscribers


def _failure_message(returncode: int, stderr: str, what: str) -> str:
    if is_command_not_found(returncode, stderr):
        return ROS2_NOT_FOUND_HINT
    if returncode == COMMAND_TIMEOUT_EXIT_CODE:
        return f"{what} timed out"
    return stderr.strip() or f"{what} failed (code={returncode})"


class TopicCatalog:
    """Cached topic list with best-effort publisher/subscriber resolution."""

    def __init__(
        self,
        runner: CommandRunner,
        *,
        list_timeout_s: float = 5.0,
        participants_enabled: bool = True,
        participants_max_topics: int = 50,
        participants_timeout_s: float = 4.0,
    ):
        self._runner = runner
        self._list_timeout_s = list_timeout_s
        self._participants_enabled = participants_enabled
        self._participants_max_topics = max(0, participants_max_topics)
        self._participants_timeout_s = max(0.5, participants_timeout_s)
        self._topics: list[Topic] = []
        self._load_seq = 0
        self.last_error: str | None = None

    @property
    def topics(self) -> list[Topic]:
        return list(self._topics)

    async def list_topics(self) -> list[Topic]:
        rc, stdout, stderr = await self._runner.run(
            ["topic", "list", "-t"], timeout=self._list_timeout_s
        )
        if rc != 0:
            raise TopicDiscoveryError(_failure_message(rc, stderr, "ros2 topic list"))
        return parse_topic_list(stdout)

    async def topic_participants(self, name: str) -> tuple[list[str], list[str]]:
        rc, stdout, stderr = await self._runner.run(
            ["topic", "info", "-v", name], timeout=self._participants_timeout_s
        )
        if rc != 0:
            raise TopicDiscoveryError(_failure_message(rc, stderr, "ros2 topic info"))
        return parse_topic_info_verbose(stdout)

    async def refresh(self) -> list[Topic]:
        """Re-list topics; a failed listing clears the cache and re-raises."""
        self._load_seq += 1
        seq = self._load_seq
        try:
            topics = await self.list_topics()
        except TopicDiscoveryError as exc:
            self._topics = []
            self.last_error = str(exc)
            raise
        self._topics = topics
        self.last_error = None
        LOGGER.info("Discovered %d topics", len(topics))
        if self._participants_enabled and topics:
            target = topics
            if self._participants_max_topics and len(topics) > self._participants_max_topics:
                LOGGER.info(
                    "Resolving participants for first %d/%d topics",
                    self._participants_max_topics,
                    len(topics),
                )
                target = topics[: self._participants_max_topics]
            await self._load_participants(seq, target)
        return self.topics

    async def _load_participants(self, seq: int, topics: list[Topic]) -> None:
        semaphore = asyncio.Semaphore(PARTICIPANT_CONCURRENCY)

        async def _one(topic: Topic) -> None:
            async with semaphore:
                if seq != self._load_seq:
                    return
                try:
                    publishers, subscribers = await self.topic_participants(topic.name)
                except TopicDiscoveryError as exc:
                    LOGGER.debug("Participants for %s unavailable: %s", topic.name, exc)
                    return
                if seq != self._load_seq:
                    return
                topic.publishers = publishers
                topic.subscribers = subscribers

        await asyncio.gather(*(_one(topic) for topic in topics))
