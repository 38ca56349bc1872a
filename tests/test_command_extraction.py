"""Tests for parsing proposed commands out of assistant replies."""

from little_helper.services.command_extraction import clean_response, extract_commands


def test_command_tags() -> None:
    reply = "Let me check.\n<command>ls -la ~/Downloads</command>\nOne moment."

    assert extract_commands(reply) == ["ls -la ~/Downloads"]


def test_run_block_skips_comments_and_blank_lines() -> None:
    reply = "[RUN]\n```bash\n# look around\npwd\n\nls\n```\n"

    assert extract_commands(reply) == ["pwd", "ls"]


def test_execute_marker() -> None:
    assert extract_commands("Running [EXECUTE] `git status` now") == ["git status"]


def test_commands_keep_reply_order_across_formats() -> None:
    reply = (
        "[EXECUTE] `whoami`\n"
        "<command>df -h</command>\n"
        "[RUN]\n```sh\nuptime\n```\n"
    )

    assert extract_commands(reply) == ["whoami", "df -h", "uptime"]


def test_duplicates_are_kept_once() -> None:
    reply = "<command>ls</command> and again [EXECUTE] `ls`"

    assert extract_commands(reply) == ["ls"]


def test_empty_and_absent() -> None:
    assert extract_commands("<command>   </command>") == []
    assert extract_commands("Just chatting, no commands here.") == []


def test_multiline_command_tag() -> None:
    assert extract_commands("<command>\n  du -sh ~\n</command>") == ["du -sh ~"]


def test_clean_response_strips_action_tags() -> None:
    reply = "Checking your files.\n<command>ls</command>\n\n\n\n<preview>x</preview>Done."

    assert clean_response(reply) == "Checking your files.\n\nDone."
