# Copyright 2024 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import io
import sys
import time
import logging
import argparse
import datetime
import textwrap
import contextlib
from types import TracebackType
from typing import Optional
from pathlib import Path

import colorama
from rich.logging import RichHandler

import sigmatch.perf
import sigmatch.rules
import sigmatch.helpers
import sigmatch.version
import sigmatch.render.json
import sigmatch.render.default
import sigmatch.render.verbose
import sigmatch.render.result_document as rdoc
from sigmatch.rules import RuleSet
from sigmatch.engine import MatchOptions
from sigmatch.exceptions import InvalidLogEntry
from sigmatch.capabilities import MatchResults, find_matches

logger = logging.getLogger("sigmatch")


E_MISSING_RULES = 10
E_MISSING_FILE = 11
E_INVALID_RULE = 12
E_INVALID_INPUT = 13
E_INVALID_PLACEHOLDERS = 14


@contextlib.contextmanager
def timing(msg: str):
    t0 = time.time()
    yield
    t1 = time.time()
    logger.debug("perf: %s: %0.2fs", msg, t1 - t0)


def simple_message_exception_handler(
    exctype: type[BaseException], value: BaseException, traceback: TracebackType | None
):
    """
    prints friendly message on unexpected exceptions to regular users (debug mode shows regular stack trace)
    """

    if exctype is KeyboardInterrupt:
        print("KeyboardInterrupt detected, program terminated", file=sys.stderr)
    else:
        print(
            f"Unexpected exception raised: {exctype}. Please run sigmatch in debug mode (-d/--debug) "
            + "to see the stack trace.",
            file=sys.stderr,
        )


def install_common_args(parser, wanted=None):
    """
    register a common set of command line arguments for re-use by main & scripts.
    these are things like logging/coloring/etc.
    also enable callers to opt-in to common arguments, like specifying the input file.

    see `handle_common_args` to do common configuration.

    args:
      parser (argparse.ArgumentParser): a parser to update in place, adding common arguments.
      wanted (set[str]): collection of arguments to opt-into, including:
        - "input_file": required positional argument to the JSON-lines log file.
        - "rules": flag to specify paths to Sigma rules.
        - "tag": flag to specify which rules to match.
        - "logsource": flags to describe where the log entries came from.
        - "placeholders": flag to specify values for placeholders.
    """
    if wanted is None:
        wanted = set()

    #
    # common arguments that all scripts will have
    #

    parser.add_argument("--version", action="version", version="%(prog)s {:s}".format(sigmatch.version.__version__))
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="enable verbose result document (no effect with --json)"
    )
    parser.add_argument("-d", "--debug", action="store_true", help="enable debugging output on STDERR")
    parser.add_argument("-q", "--quiet", action="store_true", help="disable all output but errors")
    parser.add_argument(
        "--color",
        type=str,
        choices=("auto", "always", "never"),
        default="auto",
        help="enable ANSI color codes in results, default: only during interactive session",
    )

    if "input_file" in wanted:
        parser.add_argument(
            "input_file",
            type=str,
            help="path to JSON-lines file of log entries, optionally gzip compressed",
        )

    if "rules" in wanted:
        parser.add_argument(
            "-r",
            "--rules",
            type=str,
            required=True,
            action="append",
            help="path to rule file or directory, may be repeated",
        )
        parser.add_argument(
            "--skip-unsupported",
            action="store_true",
            help="skip rules that use unsupported features, like aggregations, rather than failing",
        )

    if "tag" in wanted:
        parser.add_argument("-t", "--tag", type=str, help="filter on rule title, id, and tags")

    if "logsource" in wanted:
        parser.add_argument("--product", type=str, help="product that emitted the log entries, like: windows")
        parser.add_argument("--service", type=str, help="service that emitted the log entries, like: security")
        parser.add_argument("--category", type=str, help="category of the log entries, like: process_creation")

    if "placeholders" in wanted:
        parser.add_argument(
            "-p",
            "--placeholders",
            type=str,
            help="path to YAML file mapping placeholder names to values, used by the `expand` modifier",
        )


###############################################################################
#
# "main routines"
#
# All of the following routines are considered "main routines".
# That is, they rely upon the given CLI arguments and write to output streams.
# Library code should *not* call these functions.
#
# These main routines may raise `ShouldExitError` to indicate the program
# ...should exit. Programs should handle `ShouldExitError`
# and pass the status code to `sys.exit()`.
#


class ShouldExitError(Exception):
    """raised when a main-related routine indicates the program should exit."""

    def __init__(self, status_code: int):
        self.status_code = status_code


def handle_common_args(args):
    """
    handle the global config specified by `install_common_args`,
    such as configuring logging/coloring/etc.
    the following fields will be overwritten when present:
      - input_file: file system path to the log entries.
      - rules: file system paths to rule files.
      - placeholders: file system path to the placeholder values.

    args:
      args: The parsed command line arguments from `install_common_args`.

    raises:
      ShouldExitError: if the program is invoked incorrectly and should exit.
    """
    if args.quiet:
        logging.getLogger().setLevel(logging.WARNING)
    elif args.debug:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(logging.INFO)

    # use [/] after the logger name to reset any styling,
    # and prevent the color from carrying over to the message
    logformat = "[dim]%(name)s[/]: %(message)s"

    # set markup=True to allow the use of Rich's markup syntax in log messages
    rich_handler = RichHandler(markup=True, show_time=False, show_path=True, console=sigmatch.helpers.log_console)
    rich_handler.setFormatter(logging.Formatter(logformat))

    # use RichHandler for root logger
    logging.getLogger().addHandler(rich_handler)

    if isinstance(sys.stdout, io.TextIOWrapper) or hasattr(sys.stdout, "reconfigure"):
        # rules and log entries may contain non-ASCII text.
        sys.stdout.reconfigure(encoding="utf-8")
    colorama.just_fix_windows_console()

    if args.color == "always":
        colorama.init(strip=False)
    elif args.color == "auto":
        # colorama will detect:
        #  - when on Windows console, and fixup coloring, and
        #  - when not an interactive session, and disable coloring
        # renderers should use coloring and assume it will be stripped out if necessary.
        colorama.init()
    elif args.color == "never":
        colorama.init(strip=True)
    else:
        raise RuntimeError("unexpected --color value: " + args.color)

    if not args.debug:
        sys.excepthook = simple_message_exception_handler

    if hasattr(args, "input_file"):
        args.input_file = Path(args.input_file)

    if hasattr(args, "rules"):
        args.rules = [Path(rule) for rule in args.rules]
        for rule_path in args.rules:
            logger.debug("using rules path: %s", rule_path)

    if getattr(args, "placeholders", None):
        args.placeholders = Path(args.placeholders)


def ensure_input_exists_from_cli(args):
    """
    args:
      args: The parsed command line arguments from `install_common_args`.

    raises:
      ShouldExitError: if the program is invoked incorrectly and should exit.
    """
    if not args.input_file.is_file():
        logger.error("input file %s does not exist or cannot be accessed", args.input_file)
        raise ShouldExitError(E_MISSING_FILE)


def get_rules_from_cli(args) -> RuleSet:
    """
    args:
      args: The parsed command line arguments from `install_common_args`.

    raises:
      ShouldExitError: if the program is invoked incorrectly and should exit.
    """
    try:
        with timing("load rules"):
            rules = sigmatch.rules.get_rules(args.rules, skip_unsupported=getattr(args, "skip_unsupported", False))
    except IOError as e:
        logger.error("%s", str(e))
        raise ShouldExitError(E_MISSING_RULES) from e
    except (sigmatch.rules.InvalidRule, sigmatch.rules.InvalidRuleSet) as e:
        logger.error("%s", str(e))
        if isinstance(e, sigmatch.rules.InvalidRule) and sigmatch.rules.is_unsupported_rule_error(e):
            logger.error("Use --skip-unsupported to ignore rules that use aggregations.")
        else:
            logger.error("Make sure your rule paths contain properly formatted Sigma rules.")
        raise ShouldExitError(E_INVALID_RULE) from e

    logger.debug("successfully loaded %s rules", len(rules))

    if hasattr(args, "tag") and args.tag:
        try:
            rules = rules.filter_rules_by_meta(args.tag)
        except sigmatch.rules.InvalidRuleSet as e:
            logger.error("no rules match the tag: %s", args.tag)
            raise ShouldExitError(E_MISSING_RULES) from e

        logger.debug("selected %d rules", len(rules))
        for i, r in enumerate(rules, 1):
            logger.debug(" %d. %s", i, r)

    return rules


def get_match_options_from_cli(args) -> MatchOptions:
    """
    args:
      args: The parsed command line arguments from `install_common_args`.

    raises:
      ShouldExitError: if the program is invoked incorrectly and should exit.
    """
    if not getattr(args, "placeholders", None):
        return MatchOptions()

    try:
        placeholders = sigmatch.helpers.load_placeholders_from_path(args.placeholders)
    except (IOError, ValueError) as e:
        logger.error("failed to load placeholders: %s", e)
        raise ShouldExitError(E_INVALID_PLACEHOLDERS) from e

    return MatchOptions(placeholders=placeholders)


def collect_metadata(argv: list[str], args, entry_count: int) -> rdoc.Metadata:
    return rdoc.Metadata(
        timestamp=datetime.datetime.now(),
        version=sigmatch.version.__version__,
        argv=tuple(argv) if argv else None,
        input=str(args.input_file),
        rules=tuple(str(r) for r in args.rules),
        logsource=rdoc.LogSourceOptions(
            product=args.product,
            service=args.service,
            category=args.category,
        ),
        entry_count=entry_count,
    )


def log_perf_counters():
    for counter, count in sorted(sigmatch.perf.counters.items()):
        logger.debug("perf: counter: %s: %d", counter, count)


def main(argv: Optional[list[str]] = None):
    if sys.version_info < (3, 10):
        raise RuntimeError("This version of sigmatch can only be used with Python 3.10+")

    if argv is None:
        argv = sys.argv[1:]

    desc = "Match Sigma detection rules against JSON-lines log entries."
    epilog = textwrap.dedent(
        """
        Each line of the input file is a JSON object, either with the fields nested:
          {"message": "...", "fields": {"EventID": 4688, "Image": "C:\\\\Windows\\\\System32\\\\whoami.exe"}}
        or flat, where every key other than `message` is a field:
          {"EventID": 4688, "Image": "C:\\\\Windows\\\\System32\\\\whoami.exe"}

        examples:
          match a directory of rules against a log file
            sigmatch -r /path/to/sigma/rules events.jsonl

          only consider rules written for Windows process creation events
            sigmatch -r rules/ --product windows --category process_creation events.jsonl

          report which log entries matched, and why
            sigmatch -v -r rules/ events.jsonl

          provide values for placeholders like %Admins_Workstations%
            sigmatch -r rules/ -p placeholders.yml events.jsonl

          filter rules by title, id, or tag
            sigmatch -r rules/ -t attack.t1033 events.jsonl
         """
    )

    parser = argparse.ArgumentParser(
        description=desc, epilog=epilog, formatter_class=argparse.RawDescriptionHelpFormatter
    )
    install_common_args(parser, {"input_file", "rules", "tag", "logsource", "placeholders"})
    parser.add_argument("-j", "--json", action="store_true", help="emit JSON instead of text")
    args = parser.parse_args(args=argv)

    try:
        handle_common_args(args)
        ensure_input_exists_from_cli(args)
        rules = get_rules_from_cli(args)
        options = get_match_options_from_cli(args)
    except ShouldExitError as e:
        return e.status_code

    matches: MatchResults
    try:
        with timing("match"):
            matches, entry_count = find_matches(
                rules,
                sigmatch.helpers.load_jsonl_from_path(args.input_file),
                product=args.product,
                service=args.service,
                category=args.category,
                options=options,
                disable_progress=args.quiet,
            )
    except (IOError, InvalidLogEntry) as e:
        logger.error("%s", e)
        return E_INVALID_INPUT

    if args.debug:
        log_perf_counters()

    meta = collect_metadata(argv, args, entry_count)

    if args.json:
        print(sigmatch.render.json.render(meta, matches))
    elif args.verbose:
        print(sigmatch.render.verbose.render(meta, matches))
    else:
        print(sigmatch.render.default.render(meta, matches))
    colorama.deinit()

    logger.debug("done.")

    return 0


if __name__ == "__main__":
    sys.exit(main())
