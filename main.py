#!/usr/bin/env python3
"""主流程控制器: 抓取 -> 分类 -> 过滤 -> 路由 -> 通知 (Scrape -> Classify -> Filter -> Route -> Notify)."""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import threading
import time
import traceback
from dataclasses import asdict
from datetime import date

from config import Settings, load_settings, validate_config
from review_triage.analyzers.classifier import Classifier
from review_triage.delivery.email_sender import EmailNotifier
from review_triage.delivery.notifier import CompositeNotifier, LogNotifier, Notifier
from review_triage.delivery.slack_notifier import SlackNotifier
from review_triage.errors import ConfigError
from review_triage.pipeline import PipelineResult, ReviewPipeline, append_failure
from review_triage.routing.router import DepartmentRouter
from review_triage.scrapers.manager import ScraperManager

logger = logging.getLogger(__name__)


class JsonFormatter(logging.Formatter):
    """
    简单的 JSON 日志格式化器 (Simple JSON Log Formatter)
    用于生成机器可读的流水线日志，便于后续分析或监控。
    """

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "event"):
            payload["event"] = getattr(record, "event")
        if hasattr(record, "stage"):
            payload["stage"] = getattr(record, "stage")
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def configure_logging(log_format: str, level: str = "INFO") -> None:
    """配置日志系统 (Configure Logging)"""
    handler = logging.StreamHandler()
    if log_format == "json":
        handler.setFormatter(JsonFormatter(datefmt="%Y-%m-%dT%H:%M:%S"))
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令行参数 (Parse Command Line Arguments)"""
    parser = argparse.ArgumentParser(
        description="Review Triage: scrape product feedback, classify it and route complaints to departments"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="只运行一次后退出 (Run a single scrape cycle and exit)",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="调度间隔秒数 (Seconds between scheduled runs; default: SCRAPE_INTERVAL_SECONDS)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="仅记录通知，不发送 (Log notifications instead of sending them)",
    )
    parser.add_argument(
        "--output-dir",
        default="output",
        help="运行摘要输出目录 (default: output)",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="严格模式：遇到任何错误都返回非零退出码 (Fail run on any stage error)",
    )
    parser.add_argument(
        "--log-format",
        choices=["text", "json"],
        default="text",
        help="日志格式 (text|json)",
    )
    parser.add_argument(
        "--log-level",
        default=os.getenv("LOG_LEVEL", "INFO"),
        help="日志级别 (default: INFO)",
    )
    parser.add_argument(
        "--max-workers",
        type=int,
        default=None,
        help="分类并发数 (Classification concurrency; default: CLASSIFY_MAX_CONCURRENCY)",
    )
    parser.add_argument(
        "--config-file",
        default=None,
        help="JSON 配置文件 (custom sites, departments, mappings); default: REVIEW_TRIAGE_CONFIG",
    )
    return parser.parse_args(argv)


def build_notifier(settings: Settings, dry_run: bool) -> Notifier:
    if dry_run:
        return LogNotifier()
    composite = CompositeNotifier([EmailNotifier(settings.notifier), SlackNotifier(settings.notifier)])
    if not composite.is_configured():
        logger.warning("[NOTIFY] No notification channel configured, logging notifications only")
        return LogNotifier()
    return composite


def build_pipeline(settings: Settings, dry_run: bool = False, max_workers: int | None = None) -> ReviewPipeline:
    """Construct the long-lived collaborators once and hand them to the driver."""
    return ReviewPipeline(
        scraper=ScraperManager.from_config(settings.scrapers),
        classifier=Classifier(settings.analyzer),
        router=DepartmentRouter(settings.router),
        notifier=build_notifier(settings, dry_run),
        max_workers=max_workers or settings.analyzer.max_concurrency,
    )


def _write_json(path: str, data: dict) -> None:
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(data, handle, ensure_ascii=False, indent=2)


def _emit_summary(result: PipelineResult, output_dir: str) -> None:
    """输出运行摘要统计 (Emit Run Summary)"""
    os.makedirs(output_dir, exist_ok=True)
    summary_path = os.path.join(output_dir, f"run-summary-{result.date}.json")
    _write_json(summary_path, asdict(result))
    logger.info("[SUMMARY] Wrote run summary: %s", summary_path)

    if not result.success:
        error_path = os.path.join(output_dir, f"error-{result.date}.json")
        _write_json(
            error_path,
            {
                "run_id": result.run_id,
                "date": result.date,
                "exit_reason": result.exit_reason,
                "failures": [asdict(item) for item in result.failures],
            },
        )
        logger.info("[SUMMARY] Wrote error report: %s", error_path)


def _exit_code(result: PipelineResult, strict: bool) -> int:
    if not result.success:
        return 1 if strict else 0
    if strict and result.failures:
        return 1
    return 0


def run_cycle(pipeline: ReviewPipeline, args: argparse.Namespace) -> int:
    """Run one pipeline cycle, write its summary and return the exit code."""
    try:
        result = pipeline.run_once()
    except Exception as exc:
        logger.critical("Pipeline failed unexpectedly: %s", exc)
        traceback.print_exc()
        today = date.today().strftime("%Y-%m-%d")
        result = PipelineResult(
            run_id=f"{today}-{int(time.time())}",
            date=today,
            success=False,
            exit_reason="unhandled exception",
        )
        append_failure(result, "runtime", "RUNTIME", str(exc))
        _emit_summary(result, args.output_dir)
        return 1

    _emit_summary(result, args.output_dir)
    if result.success:
        logger.info(
            "Pipeline complete | scraped=%s deduped=%s classified=%s actionable=%s notified=%s duration=%.2fs",
            result.scraped_count,
            result.deduped_count,
            result.classified_count,
            result.actionable_count,
            result.notified_count,
            result.duration_seconds,
        )
    else:
        logger.error(
            "Pipeline ended with issues | reason=%s failures=%s",
            result.exit_reason,
            len(result.failures),
        )
    return _exit_code(result, args.strict)


def run_forever(pipeline: ReviewPipeline, args: argparse.Namespace, interval: int,
                stop_event: threading.Event | None = None) -> int:
    """Scheduled loop: first run immediately, then every `interval` seconds until stopped."""
    stop_event = stop_event or threading.Event()
    logger.info("[SCHEDULE] Running every %ss", interval)
    exit_code = 0
    try:
        while not stop_event.is_set():
            exit_code = run_cycle(pipeline, args)
            if stop_event.wait(interval):
                break
    except KeyboardInterrupt:
        logger.info("[SCHEDULE] Interrupted, shutting down")
    return exit_code


def main(argv: list[str] | None = None) -> int:
    """程序入口点：解析参数，验证配置，运行流水线。"""
    args = parse_args(argv)
    configure_logging(args.log_format, args.log_level)

    try:
        settings = load_settings(args.config_file)
        valid, config_errors = validate_config(settings)
    except ConfigError as exc:
        valid, config_errors = False, [str(exc)]
    if not valid:
        for item in config_errors:
            logger.error("[CONFIG] %s", item)
        today = date.today().strftime("%Y-%m-%d")
        result = PipelineResult(
            run_id=f"{today}-{int(time.time())}",
            date=today,
            exit_reason="configuration validation failed",
        )
        for item in config_errors:
            append_failure(result, "config", "CONFIG", item)
        _emit_summary(result, args.output_dir)
        return 1

    logger.info("=" * 60)
    logger.info(
        "Review Triage | analyzer=%s dry_run=%s strict=%s",
        settings.analyzer.mode,
        args.dry_run,
        args.strict,
    )
    pipeline = build_pipeline(settings, dry_run=args.dry_run, max_workers=args.max_workers)

    if args.once:
        return run_cycle(pipeline, args)
    interval = args.interval if args.interval is not None else settings.scrape_interval_seconds
    return run_forever(pipeline, args, max(1, interval))


if __name__ == "__main__":
    sys.exit(main())
