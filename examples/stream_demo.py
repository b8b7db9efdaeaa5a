"""最小示例：通过已启动的 relay 进行流式对话。"""

import asyncio

from chat_relay.client import ChatSession


def show(event):
    if event.kind == "delta":
        print(event.delta_text, end="", flush=True)
    elif event.kind == "final":
        print()


if __name__ == "__main__":
    question = "用三句话介绍一下你自己"
    session = ChatSession(listener=show)
    print("User:", question)
    print("Agent: ", end="")
    outcome = asyncio.run(session.send(question))
    if outcome.status == "error":
        print("\n[error]", outcome.error.code, outcome.error.message)
