from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo

from clarity.config import get_settings
from clarity.errors import CommandError
from clarity.logging_utils import init_logger
from clarity.models import DailySummary, Summary, to_dict
from clarity.service import ClarityService
from clarity.utils import parse_date


def main() -> None:
    parser = argparse.ArgumentParser(description="Generate the Clarity daily summary for a given day")
    parser.add_argument("--date", help="Target date YYYY-MM-DD (defaults to today)")
    args = parser.parse_args()

    settings = get_settings()
    logger = init_logger("summarizer", settings.logging.directory, settings.logging.level)
    service = ClarityService(settings, logger)

    try:
        daily = service.generate_daily_summary(args.date)
        summaries = _summaries_for(service, daily.date)
    except CommandError as exc:
        logger.error("Failed to generate daily summary: %s", exc)
        raise SystemExit(1) from exc
    finally:
        service.shutdown()

    markdown_path, json_path = write_report(settings.output.summary_dir, daily, summaries, settings.timezone)
    logger.info("Daily summary saved to %s and %s", markdown_path, json_path)


def _summaries_for(service: ClarityService, day: str) -> List[Summary]:
    start, end = service.statistics.day_range(parse_date(day))
    return service.get_summaries(start, end)


def write_report(summary_dir: Path, daily: DailySummary, summaries: List[Summary], timezone: ZoneInfo) -> tuple[Path, Path]:
    summary_dir.mkdir(parents=True, exist_ok=True)

    # Use compact date for filenames: daily-report-YYYYMMDD.*
    compact_date = daily.date.replace("-", "")
    markdown_path = summary_dir / f"daily-report-{compact_date}.md"
    json_path = summary_dir / f"daily-report-{compact_date}.json"

    payload = to_dict(daily)
    payload["summaries"] = [to_dict(summary) for summary in summaries]

    markdown_path.write_text(render_markdown(daily, summaries, timezone), encoding="utf-8")
    json_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    return markdown_path, json_path


def render_markdown(daily: DailySummary, summaries: List[Summary], timezone: ZoneInfo) -> str:
    header_date = daily.date.replace("-", "/")
    lines = [f"# {header_date} Clarity daily report", ""]
    lines.append(f"- Screenshots: **{daily.screenshot_count}**")
    lines.append(f"- Summaries: {daily.summary_count}")
    lines.append(f"- Summarized time: {daily.total_duration_seconds / 60.0:.1f} min")

    lines.append("\n## Summary\n")
    lines.append(daily.content)

    lines.append("\n## Timeline\n")
    lines.append("| Window | Frames | Summary |")
    lines.append("| --- | ---: | --- |")
    for summary in summaries:
        start = summary.start_time.astimezone(timezone)
        end = summary.end_time.astimezone(timezone)
        window = f"{start:%H:%M:%S}-{end:%H:%M:%S}"
        content = summary.content.replace("\n", "<br>").replace("|", "\\|")
        lines.append(f"| {window} | {summary.screenshot_count} | {content} |")
    if not summaries:
        lines.append("| (no data) | 0 | - |")

    return "\n".join(lines) + "\n"


if __name__ == "__main__":
    main()
