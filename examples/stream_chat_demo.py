"""Minimal demonstration of the streaming chat service."""

import asyncio

from agent_chat import ChatService


async def main() -> None:
    question = "请用 markdown 写一份本周工作周报的模板"
    async with ChatService() as service:
        result = await service.chat_stream(
            question,
            {"report"},
            on_update=lambda text: print(f"\r{text[-60:]}", end="", flush=True),
        )
    print()
    print("User:", question)
    print("Agent:", result.cleaned_text)
    if result.active_artifact:
        print("Artifact:", result.active_artifact.title)
        print(result.active_artifact.content)


if __name__ == "__main__":
    asyncio.run(main())
