def never_cancelled():
    return False


def ignore_progress(percent, stage=None):
    pass


def iter_chunks(text, chunk_size):
    """Yields consecutive slices of `text`, each at most `chunk_size` characters."""
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    for start in range(0, len(text), chunk_size):
        yield text[start:start + chunk_size]


def process_text_in_chunks(text, chunk_size, checkpoint=None, on_progress=None, on_chunk=None):
    """
    Processes text slice by slice so long inputs can report progress and be cancelled.

    Args:
        text (str): The text to process.
        chunk_size (int): Maximum slice length, must be positive.
        checkpoint (callable): Called before each slice; returns True if the
            operation has been cancelled.
        on_progress (callable): Receives the completed percentage after each slice.
        on_chunk (callable): Receives each slice as it is processed.

    Returns:
        str or None: The reassembled text, or None if cancelled.
    """
    checkpoint = checkpoint or never_cancelled
    on_progress = on_progress or ignore_progress
    total = len(text)

    if total == 0:
        if checkpoint():
            return None
        on_progress(100)
        return ""

    chunks = []
    processed = 0
    for chunk in iter_chunks(text, chunk_size):
        if checkpoint():
            return None
        chunks.append(chunk)
        if on_chunk:
            on_chunk(chunk)
        processed += len(chunk)
        on_progress(round(min(100, 100 * processed / total)))

    return "".join(chunks)
