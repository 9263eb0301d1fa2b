"""Command line interface for mdtranslate."""

from __future__ import annotations

import argparse
import asyncio
import pathlib
import sys
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .configuration import MdTranslateConfig, get_settings, to_translator_config
from .documents import collect_markdown_files
from .errors import (
    MdTranslateError,
    OverwriteRefusedError,
    TranslationProviderConfigurationError,
)
from .eventlog import JsonLinesEventLogger
from .glossary import load_glossary
from .progress import ProgressBar
from .prompts import load_prompt_set
from .providers import build_provider
from .translator import TranslationRunner, TranslationSummary, validate_paths

OUTPUT_TAG = ".zh"
STDOUT_MARKER = "-"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mdtranslate",
        description="Translate Markdown documents while preserving their structure.",
    )
    parser.add_argument(
        "input_path",
        help="Markdown file (.md, .markdown) or a directory to translate recursively.",
    )
    parser.add_argument(
        "-o",
        "--output",
        help=(
            "Output file, or output root for directories. Use '-' to write to stdout. "
            "Defaults to '<name>.zh.md' beside the input; a directory receives that file name."
        ),
    )
    parser.add_argument(
        "-c",
        "--config",
        help="YAML configuration file merged over the discovered configuration.",
    )
    parser.add_argument(
        "--glossary",
        help="JSON glossary file mapping source terms to required translations.",
    )
    parser.add_argument(
        "-p",
        "--provider",
        help="Translation provider identifier (default: openai).",
    )
    parser.add_argument(
        "--translate-code-blocks",
        action="store_true",
        help="Also translate fenced code blocks that contain Markdown.",
    )
    parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Allow overwriting output files that already exist.",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Show detailed progress information.",
    )
    parser.add_argument(
        "--debug-provider",
        action="store_true",
        help="Log complete provider requests and responses for troubleshooting.",
    )
    return parser


@dataclass
class TranslationJob:
    input_path: pathlib.Path
    output_path: Optional[pathlib.Path]


def derive_output_path(input_path: pathlib.Path) -> pathlib.Path:
    """``notes.md`` -> ``notes.zh.md``; the original extension is kept."""

    suffix = input_path.suffix
    if not suffix:
        return input_path.with_name(f"{input_path.name}{OUTPUT_TAG}.md")
    return input_path.with_name(f"{input_path.stem}{OUTPUT_TAG}{suffix}")


def is_translated_output(path: pathlib.Path) -> bool:
    return path.stem.endswith(OUTPUT_TAG)


def plan_jobs(input_path: pathlib.Path, output: Optional[str]) -> List[TranslationJob]:
    """Map an input file or directory to the files that will be written."""

    if input_path.is_dir():
        if output == STDOUT_MARKER:
            raise MdTranslateError("Writing to stdout is only supported for a single file.")
        output_root = pathlib.Path(output).expanduser().resolve() if output else None
        jobs: List[TranslationJob] = []
        for path in collect_markdown_files(input_path):
            if is_translated_output(path):
                continue
            target = derive_output_path(path)
            if output_root is not None:
                target = output_root / target.relative_to(input_path)
            jobs.append(TranslationJob(path, target))
        if not jobs:
            raise MdTranslateError(f"No Markdown files found under {input_path}.")
        return jobs

    if output == STDOUT_MARKER:
        return [TranslationJob(input_path, None)]
    if output:
        target = pathlib.Path(output).expanduser().resolve()
        if target.is_dir():
            target = target / derive_output_path(input_path).name
        return [TranslationJob(input_path, target)]
    return [TranslationJob(input_path, derive_output_path(input_path))]


async def run_jobs(
    jobs: List[TranslationJob],
    *,
    settings: MdTranslateConfig,
    provider_name: Optional[str],
    glossary_path: Optional[str],
    translate_code_blocks: bool,
    verbose: bool,
    provider_debug: bool,
) -> List[TranslationSummary]:
    config = to_translator_config(settings).normalized()
    provider = build_provider(
        provider_name,
        api_key=config.api_key,
        base_url=config.base_url,
        debug=provider_debug,
    )
    glossary_file = glossary_path or settings.GLOSSARY_PATH
    glossary = load_glossary(pathlib.Path(glossary_file).expanduser() if glossary_file else None)
    prompts = load_prompt_set(
        pathlib.Path(settings.PROMPT_PATH).expanduser() if settings.PROMPT_PATH else None,
        pathlib.Path(settings.JUDGE_PROMPT_PATH).expanduser() if settings.JUDGE_PROMPT_PATH else None,
    )
    summaries: List[TranslationSummary] = []
    with JsonLinesEventLogger(pathlib.Path(settings.LOG_PATH).expanduser()) as logger:
        for job in jobs:
            with ProgressBar(job.input_path.name, disable=not sys.stderr.isatty()) as progress:
                runner = TranslationRunner(
                    input_path=job.input_path,
                    output_path=job.output_path,
                    config=config,
                    provider=provider,
                    glossary=glossary,
                    prompts=prompts,
                    logger=logger,
                    translate_code_blocks=translate_code_blocks,
                    on_progress=progress,
                    verbose=verbose,
                )
                output, summary = await runner.run()
            if job.output_path is None:
                sys.stdout.write(output)
            summaries.append(summary)
    return summaries


def execute_translation(
    *,
    input_path: str,
    output: Optional[str],
    config_path: Optional[str],
    glossary_path: Optional[str],
    provider: Optional[str],
    translate_code_blocks: bool,
    force_overwrite: bool,
    verbose: bool,
    provider_debug: bool,
) -> tuple[int, List[TranslationSummary], Optional[str]]:
    """Execute a translation run and return the exit code, summaries, and message."""

    resolved_input = pathlib.Path(input_path).expanduser().resolve()
    try:
        settings = get_settings(
            config_path=pathlib.Path(config_path).expanduser().resolve() if config_path else None
        )
        jobs = plan_jobs(resolved_input, output)
        for job in jobs:
            validate_paths(job.input_path, job.output_path, force_overwrite=force_overwrite)
    except FileNotFoundError as exc:
        return 1, [], str(exc)
    except OverwriteRefusedError as exc:
        return 1, [], str(exc)
    except MdTranslateError as exc:
        return 1, [], str(exc)

    try:
        summaries = asyncio.run(
            run_jobs(
                jobs,
                settings=settings,
                provider_name=provider,
                glossary_path=glossary_path,
                translate_code_blocks=translate_code_blocks or settings.TRANSLATE_CODE_BLOCKS,
                verbose=verbose,
                provider_debug=provider_debug or settings.MDTRANSLATE_PROVIDER_DEBUG,
            )
        )
    except TranslationProviderConfigurationError as exc:
        return 1, [], str(exc)
    except MdTranslateError as exc:
        return 1, [], str(exc)
    except KeyboardInterrupt:
        return 2, [], "Translation interrupted by user."
    except Exception as exc:  # pragma: no cover - last-resort report
        error_message = (
            f"{exc}\n"
            "An unexpected error occurred. Please rerun with --verbose for more details."
        )
        return 1, [], error_message

    return 0, summaries, None


def print_summary(summary: TranslationSummary) -> None:
    """Output a friendly report once processing completes."""

    out = sys.stderr if summary.output_path is None else sys.stdout
    print("\nTranslation complete.", file=out)
    print(f"  Input file:      {summary.input_path}", file=out)
    print(f"  Output file:     {summary.output_path or '<stdout>'}", file=out)
    print(
        f"  Segments:        {summary.total_segments} "
        f"in {summary.total_batches} batches",
        file=out,
    )
    if summary.singleton_fallbacks:
        print(f"  Split batches:   {summary.singleton_fallbacks}", file=out)
    print(f"  Model:           {summary.model}", file=out)
    print(f"  Languages:       {summary.source_language} -> {summary.target_language}", file=out)
    print(f"  Elapsed time:    {summary.elapsed_seconds:.2f} seconds", file=out)
    if summary.warnings:
        print("  Notes:", file=out)
        for message in summary.warnings:
            print(f"    - {message}", file=out)


def main(argv: Optional[Iterable[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    exit_code, summaries, message = execute_translation(
        input_path=args.input_path,
        output=args.output,
        config_path=args.config,
        glossary_path=args.glossary,
        provider=args.provider,
        translate_code_blocks=args.translate_code_blocks,
        force_overwrite=args.force,
        verbose=args.verbose,
        provider_debug=bool(args.debug_provider),
    )

    if message:
        print(message, file=sys.stderr)
    for summary in summaries:
        print_summary(summary)
    return exit_code


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
