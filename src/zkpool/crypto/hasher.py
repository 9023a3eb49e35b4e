"""
Two-to-one compression functions and the zero-subtree cache.

Both Merkle accumulators in the pool hash pairs of field elements with a
pluggable compressor. The canonical zero leaf and every zero-subtree value
derived from it are part of the wire-compatible constants: two independent
builds must agree on them byte for byte or their roots silently diverge.

Constants:
    FIELD_SIZE: BN254 scalar field order (the proof system's field)
    ZERO_KEYWORD: keyword hashed to obtain the canonical zero leaf
    ZERO_VALUE: int(keccak256(ZERO_KEYWORD)) mod FIELD_SIZE

Example:
    >>> from zkpool.crypto.hasher import get_compressor, ZeroSubtreeCache
    >>> compressor = get_compressor("keccak256")
    >>> zeros = ZeroSubtreeCache(height=20, compressor=compressor)
    >>> empty_root = zeros.root
"""

from typing import Callable, Dict, List, Protocol, Tuple, runtime_checkable

from zkpool.utils.hash import keccak256, sha256
from zkpool.exceptions import InvalidFieldElementError, UnknownHashFunctionError

FIELD_SIZE = 21888242871839275222246405745257275088548364400416034343698204186575808495617

ZERO_KEYWORD = "government-cheese"

ZERO_VALUE = int.from_bytes(keccak256(ZERO_KEYWORD), 'big') % FIELD_SIZE

MAX_TREE_HEIGHT = 32


def check_field_element(value: int, name: str = "value") -> int:
    """
    Ensure a value is a field element.

    Raises:
        InvalidFieldElementError: If value is not an int in [0, FIELD_SIZE)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFieldElementError(f"{name} must be an integer, got {type(value).__name__}")
    if value < 0 or value >= FIELD_SIZE:
        raise InvalidFieldElementError(f"{name} should be inside the field")
    return value


def reduce_to_field(digest: bytes) -> int:
    """Interpret a digest as a big-endian integer reduced modulo FIELD_SIZE."""
    return int.from_bytes(digest, 'big') % FIELD_SIZE


@runtime_checkable
class HashCompressor(Protocol):
    """Deterministic two-input, one-output compression over the scalar field."""

    name: str

    def compress(self, left: int, right: int) -> int:
        ...


class DigestCompressor:
    """
    Compressor built from a 32-byte digest function.

    Computes ``digest(be32(left) || be32(right)) mod FIELD_SIZE``. Operands
    are checked to be field elements, mirroring the on-chain hasher guard.
    """

    def __init__(self, name: str, digest: Callable[[bytes], bytes]):
        self.name = name
        self._digest = digest

    def compress(self, left: int, right: int) -> int:
        check_field_element(left, "left")
        check_field_element(right, "right")
        data = left.to_bytes(32, 'big') + right.to_bytes(32, 'big')
        return reduce_to_field(self._digest(data))

    def __repr__(self) -> str:
        return f"DigestCompressor(name={self.name!r})"


_COMPRESSORS: Dict[str, HashCompressor] = {
    "keccak256": DigestCompressor("keccak256", keccak256),
    "sha256": DigestCompressor("sha256", sha256),
}

DEFAULT_HASH_FUNCTION = "keccak256"


def get_compressor(name: str = DEFAULT_HASH_FUNCTION) -> HashCompressor:
    """
    Look up a registered compressor by name.

    Raises:
        UnknownHashFunctionError: If no compressor has that name
    """
    try:
        return _COMPRESSORS[name]
    except KeyError:
        raise UnknownHashFunctionError(
            f"Unknown hash function {name!r}; known: {sorted(_COMPRESSORS)}"
        )


def register_compressor(compressor: HashCompressor) -> None:
    """Make a compressor available to get_compressor under its name."""
    if not isinstance(compressor, HashCompressor):
        raise TypeError("Compressor must provide name and compress(left, right)")
    _COMPRESSORS[compressor.name] = compressor


class ZeroSubtreeCache:
    """
    Hashes of all-zero subtrees for levels 0..height.

    ``zeros[0]`` is the zero leaf and ``zeros[n] = compress(zeros[n-1], zeros[n-1])``.
    All values are computed once at construction.
    """

    def __init__(self, height: int, compressor: HashCompressor, zero_leaf: int = ZERO_VALUE):
        if height < 0 or height > MAX_TREE_HEIGHT:
            raise ValueError(f"Tree height must be between 0 and {MAX_TREE_HEIGHT}")
        check_field_element(zero_leaf, "zero_leaf")

        self.height = height
        self.compressor = compressor
        zeros: List[int] = [zero_leaf]
        for _ in range(height):
            zeros.append(compressor.compress(zeros[-1], zeros[-1]))
        self._zeros: Tuple[int, ...] = tuple(zeros)

    def zero_hash(self, level: int) -> int:
        """Return the all-zero subtree hash at a level."""
        if level < 0 or level > self.height:
            raise ValueError(f"Level must be between 0 and {self.height}")
        return self._zeros[level]

    def __getitem__(self, level: int) -> int:
        return self.zero_hash(level)

    def __len__(self) -> int:
        return len(self._zeros)

    @property
    def root(self) -> int:
        """Root of an empty tree of this height."""
        return self._zeros[self.height]

    def as_tuple(self) -> Tuple[int, ...]:
        return self._zeros

    def __repr__(self) -> str:
        return f"ZeroSubtreeCache(height={self.height}, compressor={self.compressor.name!r})"
