from openbird.parser import ParsedCommand, extract_commands, normalize_command, parse_response


def test_tagged_command_is_recovered_and_removed_from_explanation():
    result = parse_response("Check this first.\n<cmd>ls -la</cmd>")

    assert result.commands == [ParsedCommand("ls -la")]
    assert result.explanation == "Check this first."
    assert result.stage == "tag"


def test_control_line_command_is_recovered():
    result = parse_response("Running now\nCMD: df -h")

    assert result.commands == [ParsedCommand("df -h")]
    assert result.explanation == "Running now"
    assert result.stage == "control"


def test_fenced_bash_block_is_recovered():
    result = parse_response("```bash\necho hello\n```")

    assert result.commands == [ParsedCommand("echo hello")]
    assert result.explanation == ""
    assert result.stage == "fence"


def test_empty_tag_does_not_stop_fallback_to_fence():
    result = parse_response("<cmd>   </cmd>\n```bash\npwd\n```")

    assert result.commands == [ParsedCommand("pwd")]
    assert result.stage == "fence"


def test_multiline_tag_content_collapses_to_first_line():
    assert extract_commands("<cmd>echo a\necho b</cmd>") == ["echo a"]


def test_tags_win_over_later_forms():
    text = "<cmd>whoami</cmd>\nCMD: uptime\n```sh\ndate\n```"

    result = parse_response(text)

    assert [c.action for c in result.commands] == ["whoami"]
    assert "CMD: uptime" in result.explanation
    assert "```sh" in result.explanation


def test_multiple_tags_keep_order():
    assert extract_commands("<cmd>one</cmd> and <CMD>two</CMD>") == ["one", "two"]


def test_untagged_fence_is_not_a_command():
    result = parse_response("Here is some code:\n```python\nprint(1)\n```")

    assert result.commands == []
    assert result.stage is None
    assert "print(1)" in result.explanation


def test_plain_text_has_no_commands():
    result = parse_response("  All finished, nothing else to run.  ")

    assert result.commands == []
    assert result.explanation == "All finished, nothing else to run."


def test_none_input_yields_empty_result():
    result = parse_response(None)

    assert result.commands == []
    assert result.explanation == ""


def test_parsing_is_repeatable():
    text = "Listing:\n<cmd>ls</cmd>\n```bash\npwd\n```"

    assert parse_response(text) == parse_response(text)


def test_normalize_strips_prompt_and_backticks():
    assert normalize_command("`$ ls -la`") == "ls -la"
    assert normalize_command("\n\n   git status\n  git diff") == "git status"
    assert normalize_command("$ $HOME") == "$HOME"
    assert normalize_command("   ") == ""
    assert normalize_command(None) == ""


def test_to_tool_calls_targets_shell_tool():
    calls = parse_response("CMD: ls\nCMD: pwd").to_tool_calls()

    assert [call.name for call in calls] == ["bash", "bash"]
    assert [call.arguments for call in calls] == [{"command": "ls"}, {"command": "pwd"}]
