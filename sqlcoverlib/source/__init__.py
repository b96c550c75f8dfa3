from .filters import ExcludeFilter
from .tokenizer import Token, TokenKind, tokenize, significant_tokens
from .segmenter import SegmentationOutcome, SourceSegmenter, find_body_start
