"""Tests for the danger-tier classifier."""

from __future__ import annotations

import random
import string

import pytest

from little_helper.models.command import DangerLevel
from little_helper.services.command_classifier import (
    ELEVATION_PROGRAMS,
    RULES,
    CommandClassifier,
    classify,
    explain,
)

SAFE = DangerLevel.SAFE
CONFIRM = DangerLevel.NEEDS_CONFIRMATION
DANGEROUS = DangerLevel.DANGEROUS


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("ls", SAFE),
        ("ls -la ~/Documents", SAFE),
        ("cat notes.txt | grep todo | wc -l", SAFE),
        ("git status", SAFE),
        ("git log --oneline -n 5", SAFE),
        ("find . -name '*.py'", SAFE),
        ("df -h && free -m", SAFE),
        ("ls 2>/dev/null", SAFE),
        ("python3 --version", SAFE),
        ("pip list", SAFE),
        ("git commit -m 'fix typo'", CONFIRM),
        ("git push origin main", CONFIRM),
        ("mkdir -p build/output", CONFIRM),
        ("curl https://example.com", CONFIRM),
        ("pip install requests", CONFIRM),
        ("sed -i 's/a/b/' notes.txt", CONFIRM),
        ("sort -o sorted.txt names.txt", CONFIRM),
        ("echo hello > greeting.txt", CONFIRM),
        ("ls >> listing.txt", CONFIRM),
        ("awk '{print $1}' data.txt", CONFIRM),
        ("rm -rf build", DANGEROUS),
        ("rm notes.txt", DANGEROUS),
        ("find . -name '*.tmp' -delete", DANGEROUS),
        ("find . -exec cat {} ;", DANGEROUS),
        ("git push --force origin main", DANGEROUS),
        ("git push -f", DANGEROUS),
        ("git reset --hard HEAD~1", DANGEROUS),
        ("git clean -fd", DANGEROUS),
        ("git branch -D feature", DANGEROUS),
        ("chmod 777 script.sh", DANGEROUS),
        ("kill -9 1234", DANGEROUS),
        ("pip uninstall requests", DANGEROUS),
    ],
)
def test_rule_table(command: str, expected: DangerLevel) -> None:
    assert classify(command) is expected


@pytest.mark.parametrize(
    "command",
    [
        "",
        "   ",
        "frobnicate --all",
        "./install.sh",
        "/usr/local/bin/tool",
        "echo $(rm -rf ~)",
        "echo `whoami`",
        "diff <(ls a) <(ls b)",
        "sleep 100 &",
        "echo 'unterminated",
        "FOO=bar ls",
        "ls | ",
        "| ls",
        "ls && frobnicate",
        "git frobnicate",
    ],
)
def test_unrecognised_input_is_dangerous(command: str) -> None:
    result = explain(command)

    assert result.level is DANGEROUS
    assert result.is_default


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("sed -n '1e touch made' in.txt", CONFIRM),
        ("sed -n 'w copy.txt' in.txt", CONFIRM),
        ("sed 's/a/b/' in.txt", CONFIRM),
        ("rg --pre 'rm -rf ~' x .", DANGEROUS),
        ("rg --pre=cat pattern", DANGEROUS),
        ("rg --pre-glob '*.gz' pattern", DANGEROUS),
        ("rg pattern src", SAFE),
        ("ag --pager=sh pattern", DANGEROUS),
        ("sort --compress-program=sh names.txt", DANGEROUS),
        ("sort names.txt", SAFE),
        ("find . -fprint0 out", DANGEROUS),
        ("find . -fls listing", DANGEROUS),
        ("git remote -v", SAFE),
        ("git remote add upstream https://example.com/repo.git", CONFIRM),
        ("git remote remove origin", CONFIRM),
        ("git remote rename origin old", CONFIRM),
        ("git fetch origin", SAFE),
        ("git fetch --upload-pack=touch origin", DANGEROUS),
        ("git diff --output=changes.patch", CONFIRM),
        ("cargo build", CONFIRM),
        ("cargo test", CONFIRM),
        ("cargo check", CONFIRM),
        ("cargo --version", SAFE),
        ("uniq names.txt", SAFE),
        ("uniq names.txt deduped.txt", CONFIRM),
        ("tree -o listing.txt", CONFIRM),
    ],
)
def test_programs_that_write_files_or_run_commands(command: str, expected: DangerLevel) -> None:
    assert classify(command) is expected


def test_sed_execute_command_is_not_auto_approved() -> None:
    result = explain("sed -n '1e touch made' in.txt")

    assert result.level is not SAFE
    assert result.rule == "sed"


def test_most_severe_segment_wins() -> None:
    result = explain("ls; rm -rf build; echo done")

    assert result.level is DANGEROUS
    assert result.rule == "rm"
    assert "3 chained commands" in result.description


def test_escalation_flag_inside_cluster() -> None:
    assert classify("git branch -vD old") is DANGEROUS


def test_flags_after_double_dash_do_not_escalate() -> None:
    assert classify("find . -name -- -delete") is SAFE


@pytest.mark.parametrize("prefix", ["sudo", "doas", "pkexec", "sudo -u root"])
def test_elevation_prefix_is_dangerous_and_requires_elevation(prefix: str) -> None:
    result = explain(f"{prefix} apt update")

    assert result.level is DANGEROUS
    assert result.requires_elevation
    assert result.rule.startswith("elevation:")
    assert not result.is_default


def test_elevation_inside_chain_requires_elevation() -> None:
    result = explain("ls && sudo ls /root")

    assert result.level is DANGEROUS
    assert result.requires_elevation


def test_explain_is_deterministic() -> None:
    assert explain("git push origin main") == explain("git push origin main")
    assert explain("git push origin main").rule == "git push"


def test_wrapper_matches_module_functions() -> None:
    classifier = CommandClassifier()

    assert classifier.classify("rm x") is classify("rm x")
    assert classifier.explain("ls") == explain("ls")


def test_random_input_never_raises_and_is_deterministic() -> None:
    rng = random.Random(20260301)
    alphabet = string.ascii_letters + string.digits + " -_./'\"`$()<>|&;*~\n\t\\"
    for _ in range(2000):
        text = "".join(rng.choice(alphabet) for _ in range(rng.randint(0, 40)))
        first = classify(text)
        assert first is classify(text)
        assert isinstance(first, DangerLevel)


def test_random_unknown_programs_fail_closed() -> None:
    rng = random.Random(7)
    known = {program for program, _ in RULES} | ELEVATION_PROGRAMS
    for _ in range(500):
        program = "".join(rng.choice(string.ascii_lowercase) for _ in range(rng.randint(3, 12)))
        if program in known:
            continue
        result = explain(f"{program} --help")
        assert result.level is DANGEROUS
        assert result.is_default
