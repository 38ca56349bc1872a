"""
Danger-tier classification for proposed shell commands.

Classification is a structured match on program name, subcommand and flags
against a closed rule table. Anything the table does not recognise, and any
shell construct that could hide what actually runs, is Dangerous.
"""

from __future__ import annotations

import re
import shlex
from dataclasses import dataclass

from little_helper.models.command import Classification, DangerLevel

SAFE = DangerLevel.SAFE
CONFIRM = DangerLevel.NEEDS_CONFIRMATION
DANGEROUS = DangerLevel.DANGEROUS

ELEVATION_PROGRAMS = frozenset({"sudo", "doas", "su", "pkexec"})

CONTROL_OPERATORS = frozenset({"|", "||", "&&", ";", "|&"})
OUTPUT_REDIRECTS = frozenset({">", ">>", ">|", "&>", "&>>"})
INPUT_REDIRECTS = frozenset({"<"})
FD_DUPLICATES = frozenset({">&", "<&"})
HARMLESS_TARGETS = frozenset({"/dev/null"})

_SUBSTITUTION_MARKERS = ("$(", "`", "<(", ">(")
_ENV_ASSIGNMENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*=")


@dataclass(frozen=True)
class Escalation:
    """Flags that move a matched command to a stricter tier."""

    flags: tuple[str, ...]
    level: DangerLevel
    reason: str

    def matches(self, args: list[str]) -> bool:
        return any(_flag_present(flag, args) for flag in self.flags)


@dataclass(frozen=True)
class CommandRule:
    """One entry in the closed rule table."""

    program: str
    level: DangerLevel
    description: str
    subcommand: str | None = None
    escalations: tuple[Escalation, ...] = ()
    # more operands than this means an output file was named
    max_operands: int | None = None

    def writes_operand(self, args: list[str]) -> bool:
        if self.max_operands is None:
            return False
        operands = [a for a in args if a != "--" and not (a.startswith("-") and len(a) > 1)]
        return len(operands) > self.max_operands

    @property
    def name(self) -> str:
        return f"{self.program} {self.subcommand}" if self.subcommand else self.program


def _flag_present(flag: str, args: list[str]) -> bool:
    """
    Match a flag against arguments.

    `--long` matches `--long` and `--long=value`; a single-letter `-x`
    also matches inside short clusters such as `-rx`; other words
    (`-delete`, `remove`) match exactly.
    """
    for arg in args:
        if arg == "--":
            return False
        if flag.startswith("--"):
            if arg == flag or arg.startswith(flag + "="):
                return True
        elif flag.startswith("-") and len(flag) == 2:
            if arg.startswith("-") and not arg.startswith("--") and flag[1] in arg[1:]:
                return True
        elif arg == flag:
            return True
    return False


def _rules(*rules: CommandRule) -> dict[tuple[str, str | None], CommandRule]:
    return {(r.program, r.subcommand): r for r in rules}


def _simple(level: DangerLevel, description: str, *programs: str) -> list[CommandRule]:
    return [CommandRule(p, level, description) for p in programs]


_FIND_EXEC = Escalation(
    ("-delete", "-exec", "-execdir", "-ok", "-okdir", "-fprint", "-fprint0", "-fprintf", "-fls"),
    DANGEROUS,
    "deletes files, writes files or runs other programs",
)
_FORCE_PUSH = Escalation(("--force", "-f", "--force-with-lease", "--mirror", "--delete"), DANGEROUS, "rewrites remote history")
_GIT_OUTPUT_FILE = Escalation(("--output",), CONFIRM, "writes an output file")
_GIT_REMOTE_PROGRAM = Escalation(
    ("--upload-pack", "--receive-pack", "--exec"), DANGEROUS, "runs a program named on the command line"
)

RULES: dict[tuple[str, str | None], CommandRule] = _rules(
    *_simple(
        SAFE,
        "Lists or inspects files",
        "ls", "pwd", "file", "stat", "du", "df", "wc", "basename", "dirname",
        "realpath", "readlink", "which", "whereis", "locate", "mdfind", "zipinfo",
    ),
    CommandRule(
        "tree",
        SAFE,
        "Lists or inspects files",
        escalations=(Escalation(("-o",), CONFIRM, "writes an output file"),),
    ),
    *_simple(SAFE, "Reads file contents", "cat", "head", "tail", "less", "more"),
    *_simple(
        SAFE,
        "Searches or transforms text without writing files",
        "grep", "egrep", "fgrep", "cut", "tr", "diff", "comm", "column", "jq",
    ),
    CommandRule(
        "rg",
        SAFE,
        "Searches text",
        escalations=(Escalation(("--pre", "--pre-glob"), DANGEROUS, "runs a preprocessor program"),),
    ),
    CommandRule(
        "ag",
        SAFE,
        "Searches text",
        escalations=(Escalation(("--pager",), DANGEROUS, "runs a pager program"),),
    ),
    CommandRule("uniq", SAFE, "Filters repeated lines", max_operands=1),
    *_simple(
        SAFE,
        "Shows system information",
        "uname", "hostname", "uptime", "free", "ps", "lsof", "id", "whoami", "groups",
        "date", "cal", "printenv", "sw_vers", "lscpu", "lsblk", "lsusb", "lspci",
        "vm_stat", "system_profiler",
    ),
    *_simple(SAFE, "Checks network connectivity", "ping", "nslookup", "dig", "host", "traceroute", "netstat", "ss"),
    *_simple(SAFE, "Prints text", "echo", "printf", "true", "false", "sleep"),
    CommandRule(
        "find", SAFE, "Searches for files", escalations=(_FIND_EXEC,)
    ),
    # sed and awk scripts can write files and run commands
    CommandRule("sed", CONFIRM, "Runs a sed script"),
    CommandRule(
        "sort",
        SAFE,
        "Sorts text",
        escalations=(
            Escalation(("-o", "--output"), CONFIRM, "writes an output file"),
            Escalation(("--compress-program",), DANGEROUS, "runs a compression program"),
        ),
    ),
    CommandRule("awk", CONFIRM, "Runs an awk program"),
    # git
    *[
        CommandRule("git", SAFE, "Reads repository state", subcommand=sub)
        for sub in ("status", "ls-files", "blame", "--version")
    ],
    *[
        CommandRule("git", SAFE, "Reads repository history", subcommand=sub, escalations=(_GIT_OUTPUT_FILE,))
        for sub in ("log", "diff", "show")
    ],
    CommandRule(
        "git",
        SAFE,
        "Lists remotes",
        subcommand="remote",
        escalations=(
            Escalation(
                ("add", "remove", "rm", "rename", "set-url", "set-head", "set-branches", "prune", "update"),
                CONFIRM,
                "changes remotes",
            ),
        ),
    ),
    CommandRule(
        "git", SAFE, "Downloads remote changes", subcommand="fetch", escalations=(_GIT_REMOTE_PROGRAM,)
    ),
    CommandRule(
        "git",
        SAFE,
        "Lists branches",
        subcommand="branch",
        escalations=(
            Escalation(("-d", "--delete", "-m", "--move", "-c", "--copy"), CONFIRM, "changes branches"),
            Escalation(("-D", "-M", "-C", "--force", "-f"), DANGEROUS, "force-changes branches"),
        ),
    ),
    *[
        CommandRule("git", CONFIRM, "Changes the repository", subcommand=sub)
        for sub in ("add", "commit", "pull", "merge", "checkout", "switch", "stash", "tag", "restore", "rebase", "init", "clone")
    ],
    CommandRule("git", CONFIRM, "Pushes to a remote", subcommand="push", escalations=(_FORCE_PUSH,)),
    CommandRule(
        "git",
        CONFIRM,
        "Moves the current branch",
        subcommand="reset",
        escalations=(Escalation(("--hard", "--merge", "--keep"), DANGEROUS, "discards local changes"),),
    ),
    CommandRule("git", DANGEROUS, "Deletes untracked files", subcommand="clean"),
    # toolchains
    CommandRule("cargo", SAFE, "Shows a tool version", subcommand="--version"),
    # build scripts run arbitrary code and write target/
    *[
        CommandRule("cargo", CONFIRM, "Builds or checks a Rust project", subcommand=sub)
        for sub in ("check", "test", "build", "clippy")
    ],
    CommandRule("cargo", CONFIRM, "Installs a Rust program", subcommand="install"),
    *[
        CommandRule(program, SAFE, "Shows a tool version", subcommand="--version")
        for program in ("python", "python3", "node", "npm", "pip", "pip3", "rustc", "go", "ollama", "brew")
    ],
    *[
        CommandRule(program, SAFE, "Lists installed packages", subcommand=sub)
        for program, sub in (
            ("pip", "list"), ("pip", "show"), ("pip", "freeze"),
            ("pip3", "list"), ("pip3", "show"), ("pip3", "freeze"),
            ("npm", "list"), ("npm", "ls"), ("brew", "list"), ("brew", "info"),
            ("apt", "list"), ("apt", "show"), ("ollama", "list"),
        )
    ],
    *[
        CommandRule(program, CONFIRM, "Installs software", subcommand=sub)
        for program, sub in (
            ("pip", "install"), ("pip3", "install"), ("npm", "install"), ("brew", "install"),
            ("brew", "upgrade"), ("ollama", "pull"),
        )
    ],
    *[
        CommandRule(program, DANGEROUS, "Removes software", subcommand=sub)
        for program, sub in (
            ("pip", "uninstall"), ("pip3", "uninstall"), ("npm", "uninstall"),
            ("brew", "uninstall"), ("ollama", "rm"),
        )
    ],
    # file changes
    *_simple(CONFIRM, "Creates, copies or moves files", "cp", "mv", "mkdir", "touch", "ln"),
    *_simple(CONFIRM, "Downloads from the network", "curl", "wget"),
    *_simple(CONFIRM, "Opens a file or editor", "open", "xdg-open", "nano", "vim", "nvim", "code"),
    *_simple(CONFIRM, "Unpacks or creates archives", "tar", "unzip", "zip", "gzip", "gunzip"),
    *_simple(DANGEROUS, "Deletes files", "rm", "rmdir", "shred", "unlink"),
    *_simple(DANGEROUS, "Changes ownership or permissions", "chmod", "chown", "chgrp"),
    *_simple(DANGEROUS, "Stops running programs", "kill", "killall", "pkill"),
    *_simple(DANGEROUS, "Writes raw disks or filesystems", "dd", "mkfs", "fdisk", "diskutil", "parted"),
    *_simple(DANGEROUS, "Changes system state", "shutdown", "reboot", "halt", "systemctl", "launchctl", "crontab"),
)

_PROGRAMS_WITH_SUBCOMMANDS = frozenset(p for p, sub in RULES if sub is not None)


class _Unclassifiable(Exception):
    """Internal: the command cannot be safely parsed."""

    def __init__(self, rule: str, description: str):
        super().__init__(description)
        self.rule = rule
        self.description = description


def _default(rule: str, description: str, requires_elevation: bool = False) -> Classification:
    return Classification(
        level=DANGEROUS,
        rule=rule,
        description=description,
        requires_elevation=requires_elevation,
        is_default=True,
    )


def _tokenize(line: str) -> list[str]:
    lexer = shlex.shlex(line, posix=True, punctuation_chars=True)
    lexer.whitespace_split = True
    lexer.commenters = ""
    try:
        return list(lexer)
    except ValueError:
        raise _Unclassifiable("shell:unbalanced_quotes", "Quoting could not be parsed") from None


def _segments(text: str) -> list[tuple[list[str], bool]]:
    """
    Split a command line into simple commands.

    Returns (words, writes_output) per command. Redirection operators and
    their targets are removed from the words.
    """
    segments: list[tuple[list[str], bool]] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        tokens = _tokenize(line)
        words: list[str] = []
        writes = False
        last_operator: str | None = None
        i = 0
        while i < len(tokens):
            token = tokens[i]
            if token in CONTROL_OPERATORS:
                if not words:
                    raise _Unclassifiable("shell:empty_command", "Operator without a command")
                segments.append((words, writes))
                words, writes, last_operator = [], False, token
            elif token == "&":
                raise _Unclassifiable("shell:background", "Runs a command in the background")
            elif token in OUTPUT_REDIRECTS or token in INPUT_REDIRECTS or token in FD_DUPLICATES:
                if i + 1 >= len(tokens):
                    raise _Unclassifiable("shell:redirect", "Redirection without a target")
                target = tokens[i + 1]
                if len(words) > 1 and words[-1].isdigit():
                    words.pop()  # file descriptor number, as in 2>/dev/null
                if token in OUTPUT_REDIRECTS and target not in HARMLESS_TARGETS:
                    writes = True
                elif token in FD_DUPLICATES and not target.isdigit():
                    raise _Unclassifiable("shell:redirect", "Unusual redirection")
                i += 1
            elif token and set(token) <= set("();<>|&"):
                raise _Unclassifiable("shell:operator", f"Unsupported shell operator {token!r}")
            else:
                words.append(token)
                last_operator = None
            i += 1
        if words:
            segments.append((words, writes))
        elif last_operator not in (None, ";"):
            raise _Unclassifiable("shell:empty_command", "Operator without a command")
    return segments


def _match_rule(program: str, args: list[str]) -> CommandRule | None:
    if program in _PROGRAMS_WITH_SUBCOMMANDS and args:
        rule = RULES.get((program, args[0]))
        if rule is not None:
            return rule
    return RULES.get((program, None))


def _classify_words(words: list[str], writes: bool) -> Classification:
    program, args = words[0], words[1:]

    if _ENV_ASSIGNMENT_RE.match(program):
        return _default("shell:env_assignment", "Sets environment variables before running a program")

    if program in ELEVATION_PROGRAMS:
        inner = next((a for a in args if not a.startswith("-")), None)
        target = f" to run {inner}" if inner else ""
        return Classification(
            level=DANGEROUS,
            rule=f"elevation:{program}",
            description=f"Requests administrator access{target}",
            requires_elevation=True,
        )

    rule = _match_rule(program, args)
    if rule is None:
        return _default("default:unknown_program", f"Unrecognised program {program!r}")

    level, description = rule.level, rule.description
    for escalation in rule.escalations:
        if escalation.level.severity > level.severity and escalation.matches(args):
            level, description = escalation.level, f"{rule.description}; {escalation.reason}"
    if level.severity < CONFIRM.severity and rule.writes_operand(args):
        level, description = CONFIRM, f"{rule.description}; writes an output file"

    classification = Classification(level=level, rule=rule.name, description=description)
    if writes and level.severity < CONFIRM.severity:
        return Classification(
            level=CONFIRM,
            rule="redirect:output",
            description=f"{rule.description}; writes output to a file",
        )
    return classification


def explain(command: str) -> Classification:
    """
    Classify a command and report which rule decided it.

    Total and deterministic: never raises, and the same text always yields
    the same Classification.
    """
    text = command.strip()
    if not text:
        return _default("shell:empty", "Empty command")

    for marker in _SUBSTITUTION_MARKERS:
        if marker in text:
            return _default("shell:substitution", "Runs a nested command whose text is not visible")

    try:
        segments = _segments(text)
    except _Unclassifiable as e:
        return _default(e.rule, e.description)

    if not segments:
        return _default("shell:empty", "Empty command")

    results = [_classify_words(words, writes) for words, writes in segments]
    worst = results[0]
    for result in results[1:]:
        if result.level.severity > worst.level.severity:
            worst = result

    requires_elevation = any(r.requires_elevation for r in results)
    if len(results) == 1:
        return worst
    return Classification(
        level=worst.level,
        rule=worst.rule,
        description=f"{len(results)} chained commands; most severe: {worst.description}",
        requires_elevation=requires_elevation,
        is_default=worst.is_default,
    )


def classify(command: str) -> DangerLevel:
    """Danger tier of a command. Unrecognised commands are Dangerous."""
    return explain(command).level


class CommandClassifier:
    """Injectable wrapper around the rule table."""

    def classify(self, command: str) -> DangerLevel:
        return classify(command)

    def explain(self, command: str) -> Classification:
        return explain(command)
