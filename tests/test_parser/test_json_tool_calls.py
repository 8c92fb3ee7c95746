from openbird.parser import extract_json_tool_calls


def test_recovers_name_and_arguments_object():
    text = 'I will look around.\n{"name": "bash", "arguments": {"command": "ls"}}'

    calls = extract_json_tool_calls(text)

    assert len(calls) == 1
    assert calls[0].name == "bash"
    assert calls[0].arguments == {"command": "ls"}


def test_accepts_alternate_keys_and_string_arguments():
    text = '{"tool": "read_file", "params": "{\\"path\\": \\"notes.txt\\"}"}'

    calls = extract_json_tool_calls(text)

    assert [(c.name, c.arguments) for c in calls] == [("read_file", {"path": "notes.txt"})]


def test_unpacks_tool_calls_wrapper_and_function_objects():
    text = (
        '{"tool_calls": ['
        '{"function": {"name": "bash", "arguments": {"command": "pwd"}}},'
        '{"name": "bash", "parameters": {"command": "id"}}'
        ']}'
    )

    calls = extract_json_tool_calls(text)

    assert [c.arguments["command"] for c in calls] == ["pwd", "id"]
    assert [c.id for c in calls] == ["text_0", "text_1"]


def test_unknown_tools_are_dropped_when_names_are_given():
    text = '{"name": "rm_everything", "arguments": {}} {"name": "bash", "arguments": {"command": "ls"}}'

    calls = extract_json_tool_calls(text, known_tools=["bash"])

    assert [c.name for c in calls] == ["bash"]


def test_malformed_and_unrelated_json_is_ignored():
    text = 'config is {"a": 1} and broken {"name": "bash", "arguments": '

    assert extract_json_tool_calls(text) == []
    assert extract_json_tool_calls("") == []
    assert extract_json_tool_calls(None) == []
