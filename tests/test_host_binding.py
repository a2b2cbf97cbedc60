import asyncio

import pytest

from hscript import ScriptRunner, tag_handler


class MyHost:
    def __init__(self):
        self.seen = []

    @tag_handler
    def shout(self, node, interp):
        node.set_text(node.text_content().upper())

    @tag_handler
    async def remember_var(self, node, interp):
        await asyncio.sleep(0)
        self.seen.append(interp.env.get(node.get("name")))
        node.remove()

    # Not marked: must not become a tag
    def helper(self, node, interp):
        raise AssertionError("should not be called")


@pytest.mark.asyncio
async def test_host_tags_are_bound_with_dashes():
    host = MyHost()
    runner = ScriptRunner(host_object=host)
    res = await runner.handle_script(
        '<store name="x" value="3"><shout>hi</shout><remember-var name="x"></remember-var>'
    )
    assert res.status == "success", res.format_error()
    assert res.value == "<shout>HI</shout>"
    assert host.seen == [3]


@pytest.mark.asyncio
async def test_unmarked_methods_stay_transparent():
    runner = ScriptRunner(host_object=MyHost())
    res = await runner.handle_script("<helper>ok</helper>")
    assert res.status == "success"
    assert res.text == "ok"


@pytest.mark.asyncio
async def test_input_uses_prompt_handler():
    prompts = []

    def handler(text):
        prompts.append(text)
        return "Ada"

    runner = ScriptRunner()
    runner.prompt_handler = handler
    res = await runner.handle_script('<input var="who" prompt="Name?"><output expression="\'Hi \' + who"></output>')
    assert res.status == "success", res.format_error()
    assert res.text == "Hi Ada"
    assert prompts == ["Name?"]


@pytest.mark.asyncio
async def test_input_accepts_async_prompt_handler():
    async def handler(text):
        return "42\n"

    runner = ScriptRunner()
    runner.prompt_handler = handler
    res = await runner.handle_script('<input var="n">')
    assert res.status == "success"
    assert runner.interpreter.env.get("n") == "42"


@pytest.mark.asyncio
async def test_input_requires_var():
    res = await ScriptRunner().handle_script('<input prompt="?">')
    assert res.status == "error"
    assert "MissingAttribute" in res.error_message
