from agent_chat.artifacts.extractor import ArtifactExtractor, default_title


def test_plain_text_unchanged():
    result = ArtifactExtractor().scan("plain text")
    assert result.cleaned_text == "plain text"
    assert result.blocks == []


def test_single_block_removed():
    result = ArtifactExtractor().scan("a\n```js\nx=1\n```\nb")
    assert len(result.blocks) == 1
    block = result.blocks[0]
    assert block.language == "js"
    assert block.content == "x=1"
    assert block.title == "JS 文档"
    assert "```" not in result.cleaned_text
    assert result.cleaned_text.startswith("a")
    assert result.cleaned_text.endswith("b")


def test_explicit_title_and_default_titles():
    text = '```markdown title="周报"\n# 标题\n```\n```table\n|a|b|\n```'
    result = ArtifactExtractor().scan(text)
    assert [b.title for b in result.blocks] == ["周报", "数据表格"]
    assert result.cleaned_text == ""
    assert default_title("markdown") == "Markdown 文档"
    assert default_title("rust") == "RUST 文档"


def test_unclosed_or_untagged_fence_is_kept():
    extractor = ArtifactExtractor()
    untagged = "x\n```\ncode\n```\ny"
    assert extractor.scan(untagged).blocks == []
    assert extractor.scan(untagged).cleaned_text == untagged
    unclosed = "intro\n```python\nprint(1)"
    result = extractor.scan(unclosed)
    assert result.blocks == []
    assert result.cleaned_text == unclosed


def test_scan_is_idempotent():
    extractor = ArtifactExtractor()
    text = "before\n```python\nprint('```js')\n```\nafter"
    first = extractor.scan(text)
    assert first == extractor.scan(text)
    assert first.blocks[0].content == "print('```js')"


def test_promote_first_block_only():
    extractor = ArtifactExtractor()
    result = extractor.scan("```json\n{}\n```\n```css\na{}\n```")
    active = extractor.promote(result, "msg-1")
    assert active.language == "json"
    assert active.source_message_id == "msg-1"
    assert extractor.promote(extractor.scan("none"), "msg-2") is None
    second = extractor.create_artifact(result.blocks[1], "msg-1")
    assert second.title == "CSS 样式"
