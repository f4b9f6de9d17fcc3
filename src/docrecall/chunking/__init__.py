from .byte_chunker import ByteChunker, chunk_with_overlap

__all__ = ["ByteChunker", "chunk_with_overlap"]
