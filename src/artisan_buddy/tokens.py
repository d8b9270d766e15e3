def estimate_tokens(messages: list[dict]) -> int:
    """Rough token estimate (four characters per token) over message contents."""
    total_chars = 0
    for msg in messages:
        content = msg.get("content", "")
        if isinstance(content, str):
            total_chars += len(content)
        elif isinstance(content, list):
            for block in content:
                if isinstance(block, str):
                    total_chars += len(block)
                elif isinstance(block, dict) and block.get("type") == "text":
                    total_chars += len(block.get("text", ""))
    return total_chars // 4


def estimate_text_tokens(text: str) -> int:
    return len(text) // 4
