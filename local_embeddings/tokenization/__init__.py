"""
Tokenization subpackage -- text to fixed-length token id / mask rows.

    Tokenizer -- BERT WordPiece tokenizer built from a model's vocab.txt
"""

from local_embeddings.tokenization.tokenizer import Tokenizer
