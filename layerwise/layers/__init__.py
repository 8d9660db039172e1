"""Layer implementations. Importing this package registers every layer type."""

from .structural import Concat, Split, Slice, Flatten
from .elementwise import Eltwise, EltwiseOp, MVN, Softmax, ArgMax
from .inner_product import InnerProduct
from .control import Filter, Silence
from .indirection import Indirection

__all__ = [
    'Concat', 'Split', 'Slice', 'Flatten', 'Eltwise', 'EltwiseOp', 'MVN', 'Softmax',
    'ArgMax', 'InnerProduct', 'Filter', 'Silence', 'Indirection'
]
