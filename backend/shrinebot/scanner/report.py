"""Scan report: a deterministic document built from a finished ScanSession."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import ReportGenerationError
from .session import ErrorLogEntry, MessageEntry, ScanSession

logger = logging.getLogger(__name__)

REPORT_TITLE = "Shrine Event Scan Report"


def format_duration(seconds: float) -> str:
    total = int(seconds)
    return f"{total // 60}m {total % 60}s"


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else "unknown"


def _user_label(username: str | None, user_id: int | None) -> str:
    return f"**{username}** (ID: {user_id})"


def _message_line(item: MessageEntry) -> str:
    return f"- **{item.username}** / {item.user_id} / [View Message]({item.link})"


@dataclass
class ScanReport:
    """Structured content of a report; ``to_markdown`` renders it."""

    session: ScanSession

    @property
    def summary(self) -> dict[str, Any]:
        s = self.session
        return {
            "messages_scanned": s.messages_scanned,
            "pages_fetched": s.pages_fetched,
            "matching_stickers": s.matching_stickers,
            "non_matching_stickers": len(s.non_matching_stickers),
            "messages_without_stickers": len(s.messages_without_stickers),
            "roles_assigned": s.roles_assigned,
            "already_processed": s.already_processed,
            "unknown_members": len(s.unknown_members),
            "permanent_failures": len(s.permanent_failures),
            "errors": s.errors,
            "fetch_retries": s.fetch_retries,
            "processing_time": format_duration(s.elapsed_seconds),
            "aborted": s.aborted,
        }

    @property
    def reconciliation(self) -> dict[str, Any]:
        s = self.session
        gap = s.unaccounted_for
        note = None
        if gap > 0:
            note = (
                f"The remaining {gap} messages were likely from users who sent multiple "
                "messages with the target sticker, or whose role grant did not complete. "
                "Only one message per user is processed for role assignment."
            )
        return {
            "matching_stickers": s.matching_stickers,
            "roles_assigned": s.roles_assigned,
            "already_processed": s.already_processed,
            "unknown_members": len(s.unknown_members),
            "accounted_for": s.accounted_for,
            "unaccounted_for": gap,
            "balanced": gap == 0,
            "note": note,
        }

    @property
    def messages_without_stickers(self) -> list[MessageEntry]:
        return sorted(self.session.messages_without_stickers, key=lambda m: (m.timestamp, m.link))

    @property
    def error_log(self) -> list[ErrorLogEntry]:
        # Stable: entries with equal timestamps keep their recording order
        return sorted(self.session.error_log, key=lambda e: e.timestamp)

    def as_dict(self) -> dict[str, Any]:
        s = self.session
        return {
            "title": REPORT_TITLE,
            "generated": _iso(s.finished_at),
            "guild_id": s.guild_id,
            "channel_id": s.channel_id,
            "event_id": s.event_id,
            "sticker_id": s.sticker_id,
            "role_id": s.role_id,
            "summary": self.summary,
            "reconciliation": self.reconciliation,
            "assigned_users": [{"user_id": u.user_id, "username": u.username} for u in s.assigned_users],
            "unknown_members": [
                {"user_id": u.user_id, "username": u.username, "reason": u.reason}
                for u in s.unknown_members
            ],
            "permanent_failures": [
                {"user_id": e.user_id, "username": e.username, "message": e.message}
                for e in s.permanent_failures
            ],
            "non_matching_stickers": [
                {
                    "user_id": m.user_id,
                    "username": m.username,
                    "link": m.link,
                    "sticker_ids": list(m.sticker_ids),
                    "timestamp": _iso(m.timestamp),
                }
                for m in s.non_matching_stickers
            ],
            "messages_without_stickers": [
                {
                    "user_id": m.user_id,
                    "username": m.username,
                    "link": m.link,
                    "timestamp": _iso(m.timestamp),
                    "content": m.content,
                }
                for m in self.messages_without_stickers
            ],
            "matching_sticker_messages": [
                {
                    "user_id": m.user_id,
                    "username": m.username,
                    "link": m.link,
                    "timestamp": _iso(m.timestamp),
                    "processed": m.processed,
                    "status": m.status,
                }
                for m in s.matching_sticker_messages
            ],
            "rate_limits": dict(s.rate_limits),
            "error_log": [
                {
                    "timestamp": _iso(e.timestamp),
                    "kind": e.kind,
                    "message": e.message,
                    "user_id": e.user_id,
                    "username": e.username,
                    "details": e.details,
                }
                for e in self.error_log
            ],
        }

    def to_markdown(self) -> str:
        s = self.session
        summary = self.summary
        recon = self.reconciliation
        lines: list[str] = [f"# {REPORT_TITLE}", "", f"Generated: {_iso(s.finished_at)}", ""]
        lines += [
            f"- **Guild**: {s.guild_id}",
            f"- **Channel**: {s.channel_id}",
            f"- **Event**: {s.event_id}",
            f"- **Sticker**: {s.sticker_id}",
            f"- **Role**: {s.role_id if s.role_id else 'Not set'}",
            "",
        ]

        lines += ["## Summary", ""]
        lines.append(f"- **Messages Scanned**: {summary['messages_scanned']}")
        lines.append(f"- **Pages Fetched**: {summary['pages_fetched']}")
        lines.append(f"- **Matching Stickers Found**: {summary['matching_stickers']}")
        if recon["unaccounted_for"] > 0:
            lines.append(
                f"- **Unprocessed Matching Stickers**: {recon['unaccounted_for']} *(see explanation below)*"
            )
        lines.append(f"- **Non-Matching Stickers Found**: {summary['non_matching_stickers']}")
        lines.append(f"- **Messages Without Stickers**: {summary['messages_without_stickers']}")
        lines.append(f"- **New Roles Assigned**: {summary['roles_assigned']}")
        lines.append(f"- **Already Processed Users**: {summary['already_processed']}")
        lines.append(f"- **Errors Encountered**: {summary['errors']}")
        lines.append(f"- **Unknown Members**: {summary['unknown_members']}")
        lines.append(f"- **Permanent Role Failures**: {summary['permanent_failures']}")
        lines.append(f"- **Fetch Retries**: {summary['fetch_retries']}")
        lines.append(f"- **Processing Time**: {summary['processing_time']}")
        if s.aborted:
            lines.append("- **Scan ended early**: the channel became unavailable (see error logs)")
        lines.append("")

        lines += ["## Reconciliation", ""]
        lines.append(
            f"{recon['matching_stickers']} matching sticker messages; "
            f"{recon['accounted_for']} accounted for "
            f"(roles assigned {recon['roles_assigned']} + already processed "
            f"{recon['already_processed']} + unknown members {recon['unknown_members']})."
        )
        lines.append("")
        if recon["note"]:
            lines += [recon["note"], ""]

        lines += ["## Members Added to Role", ""]
        if s.assigned_users:
            lines += [f"- {_user_label(u.username, u.user_id)}" for u in s.assigned_users]
        else:
            lines.append("- No members were added to the role.")
        lines.append("")

        lines += ["## Members Not Assigned Role", "", "### Unknown Members", ""]
        if s.unknown_members:
            lines += [f"- {_user_label(u.username, u.user_id)}: {u.reason}" for u in s.unknown_members]
        else:
            lines.append("- None")
        lines.append("")

        lines += ["### Permanent Role Assignment Failures", ""]
        if s.permanent_failures:
            lines += [f"- {_user_label(e.username, e.user_id)}: {e.message}" for e in s.permanent_failures]
        else:
            lines.append("- None")
        lines.append("")

        lines += ["## Messages With Non-Matching Stickers", ""]
        if s.non_matching_stickers:
            lines += [_message_line(m) for m in s.non_matching_stickers]
        else:
            lines.append("- No messages with non-matching stickers found.")
        lines.append("")

        lines += ["## Messages Without Stickers", ""]
        without = self.messages_without_stickers
        if without:
            lines += [_message_line(m) for m in without]
        else:
            lines.append("- No messages without stickers found.")
        lines.append("")

        lines += ["## Rate Limits", ""]
        lines.append(f"- **Rate Limit Hits**: {s.rate_limits.get('rate_limited_count', 0)}")
        lines.append(f"- **Time Spent Rate Limited**: {s.rate_limits.get('rate_limit_wait_seconds', 0)}s")
        lines.append(f"- **Total Time Paused**: {s.rate_limits.get('total_wait_seconds', 0)}s")
        lines.append("")

        lines += ["## Error Logs", ""]
        if s.error_log:
            for e in self.error_log:
                lines.append(f"### {_iso(e.timestamp)}")
                lines.append(f"- **Type**: {e.kind}")
                if e.username:
                    lines.append(f"- **User**: {e.username} ({e.user_id})")
                lines.append(f"- **Message**: {e.message}")
                if e.details:
                    lines.append(f"- **Details**: {e.details}")
                lines.append("")
        else:
            lines += ["- No errors logged.", ""]

        lines += ["## All Messages With Matching Stickers", ""]
        if s.matching_sticker_messages:
            for m in s.matching_sticker_messages:
                mark = "✅" if m.processed else "❌"
                status = f" ({m.status})" if m.status else ""
                lines.append(
                    f"- **{m.username}** / {m.user_id} / [View Message]({m.link}) / Processed: {mark}{status}"
                )
        else:
            lines.append("- No messages with matching stickers found.")
        lines.append("")

        return "\n".join(lines)


def build_report(session: ScanSession) -> ScanReport:
    return ScanReport(session=session)


def fallback_summary(session: ScanSession) -> str:
    """Minimal report that only needs the core counters."""
    return (
        "# Scan Report\n\n"
        f"Messages: {session.messages_scanned}\n"
        f"Stickers: {session.matching_stickers}\n"
        f"Roles: {session.roles_assigned}\n"
        f"Already processed: {session.already_processed}\n"
        f"Errors: {session.errors}\n"
    )


@dataclass
class ReportArtifact:
    """Where a report ended up. ``path`` is None when nothing could be written."""

    content: str
    path: Path | None
    degraded: bool = False


class ReportWriter:
    """Persist reports under ``report_dir``; degrade to a minimal summary on failure."""

    def __init__(self, report_dir: Path):
        self.report_dir = Path(report_dir)

    @staticmethod
    def file_name(session: ScanSession) -> str:
        stamp = (session.finished_at or session.clock()).strftime("%Y-%m-%dT%H-%M-%S")
        return f"scan-report-{session.guild_id}-{stamp}.md"

    def render(self, session: ScanSession) -> str:
        try:
            return build_report(session).to_markdown()
        except Exception as e:
            raise ReportGenerationError(f"Could not render report: {e}") from e

    def write(self, session: ScanSession) -> ReportArtifact:
        name = self.file_name(session)
        try:
            content = self.render(session)
            self.report_dir.mkdir(parents=True, exist_ok=True)
            path = self.report_dir / name
            path.write_text(content, encoding="utf-8")
            logger.info(f"Scan report written to {path}")
            return ReportArtifact(content=content, path=path)
        except (ReportGenerationError, OSError) as e:
            logger.error(f"Error generating report: {e}")

        content = fallback_summary(session)
        fallback_path = self.report_dir.parent / name
        try:
            fallback_path.write_text(content, encoding="utf-8")
        except OSError as e:
            logger.error(f"Fallback report could not be written either: {e}")
            return ReportArtifact(content=content, path=None, degraded=True)
        return ReportArtifact(content=content, path=fallback_path, degraded=True)
