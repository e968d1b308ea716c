# SPDX-License-Identifier: Apache-2.0
# Copyright (c) 2025 Eul Bite

"""
XMSS^MT hash-based signatures (RFC 8391).

Verification is what the client needs: it is stateless and never touches
key material beyond reading it. A small stateful signer is included to
produce keys and signatures for fixtures and interop vectors; it keeps the
next one-time index in memory only and must not be used to run a server.

Encodings (RFC 8391):
- public key: OID (4 bytes, big-endian) || root (n) || pub_seed (n)
- signature:  idx (ceil(h/8) bytes) || r (n) || d x (WOTS+ sig || auth path)

All 32 XMSS^MT parameter sets of RFC 8391 section 5.4 are supported
(SHA2-256, SHA2-512, SHAKE128 and SHAKE256 at n=32/64, w=16).
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import struct
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Domain separators of the tweakable hash functions
_HASH_F = 0
_HASH_H = 1
_HASH_MSG = 2
_HASH_PRF = 3

# Address types
_ADRS_OTS = 0
_ADRS_LTREE = 1
_ADRS_HASHTREE = 2


@dataclass(frozen=True)
class Params:
    """An XMSS^MT parameter set."""
    oid: int
    name: str
    func: str          # "sha2" or "shake"
    n: int
    full_height: int
    d: int
    w: int = 16

    @property
    def tree_height(self) -> int:
        return self.full_height // self.d

    @property
    def log_w(self) -> int:
        return self.w.bit_length() - 1

    @property
    def wots_len1(self) -> int:
        return -(-8 * self.n // self.log_w)

    @property
    def wots_len2(self) -> int:
        # floor(log2(len1 * (w - 1)) / log2(w)) + 1
        return ((self.wots_len1 * (self.w - 1)).bit_length() - 1) // self.log_w + 1

    @property
    def wots_len(self) -> int:
        return self.wots_len1 + self.wots_len2

    @property
    def idx_bytes(self) -> int:
        return (self.full_height + 7) // 8

    @property
    def signature_size(self) -> int:
        return self.idx_bytes + self.n + self.d * (self.wots_len + self.tree_height) * self.n

    @property
    def public_key_size(self) -> int:
        return 4 + 2 * self.n


def _build_params() -> dict[int, Params]:
    table = {}
    oid = 1
    for func, n in (("sha2", 32), ("sha2", 64), ("shake", 32), ("shake", 64)):
        for height, d in ((20, 2), (20, 4), (40, 2), (40, 4), (40, 8), (60, 3), (60, 6), (60, 12)):
            name = f"XMSSMT-{'SHA2' if func == 'sha2' else 'SHAKE'}_{height}/{d}_{n * 8}"
            table[oid] = Params(oid=oid, name=name, func=func, n=n, full_height=height, d=d)
            oid += 1
    return table


PARAMS: dict[int, Params] = _build_params()


def params_by_name(name: str) -> Params:
    for params in PARAMS.values():
        if params.name == name:
            return params
    raise ValueError(f"Unknown XMSS^MT parameter set: {name}")


# =============================================================================
# Hashing primitives
# =============================================================================

def _core_hash(params: Params, domain: int, key: bytes, msg: bytes) -> bytes:
    data = domain.to_bytes(params.n, "big") + key + msg
    if params.func == "sha2":
        if params.n == 32:
            return hashlib.sha256(data).digest()
        return hashlib.sha512(data).digest()
    if params.n == 32:
        return hashlib.shake_128(data).digest(32)
    return hashlib.shake_256(data).digest(64)


def _xor(a: bytes, b: bytes) -> bytes:
    return (int.from_bytes(a, "big") ^ int.from_bytes(b, "big")).to_bytes(len(a), "big")


class _Address:
    """32-byte hash address (RFC 8391 section 2.5)."""

    __slots__ = ("words",)

    def __init__(self, layer: int = 0, tree: int = 0):
        self.words = [0] * 8
        self.words[0] = layer
        self.set_tree(tree)

    def set_tree(self, tree: int) -> None:
        self.words[1] = (tree >> 32) & 0xFFFFFFFF
        self.words[2] = tree & 0xFFFFFFFF

    def set_type(self, addr_type: int) -> None:
        self.words[3] = addr_type
        self.words[4:8] = [0, 0, 0, 0]

    def set_ots(self, index: int) -> None:
        self.words[4] = index

    set_ltree = set_ots

    def set_chain(self, index: int) -> None:
        self.words[5] = index

    set_tree_height = set_chain

    def set_hash(self, index: int) -> None:
        self.words[6] = index

    set_tree_index = set_hash

    def get_tree_index(self) -> int:
        return self.words[6]

    def set_key_and_mask(self, value: int) -> None:
        self.words[7] = value

    def to_bytes(self) -> bytes:
        return struct.pack(">8I", *self.words)


def _prf(params: Params, key: bytes, adrs: _Address) -> bytes:
    return _core_hash(params, _HASH_PRF, key, adrs.to_bytes())


def _rand_hash(params: Params, left: bytes, right: bytes, seed: bytes, adrs: _Address) -> bytes:
    adrs.set_key_and_mask(0)
    key = _prf(params, seed, adrs)
    adrs.set_key_and_mask(1)
    bm0 = _prf(params, seed, adrs)
    adrs.set_key_and_mask(2)
    bm1 = _prf(params, seed, adrs)
    return _core_hash(params, _HASH_H, key, _xor(left, bm0) + _xor(right, bm1))


def _chain(params: Params, x: bytes, start: int, steps: int, seed: bytes, adrs: _Address) -> bytes:
    tmp = x
    for i in range(start, start + steps):
        adrs.set_hash(i)
        adrs.set_key_and_mask(0)
        key = _prf(params, seed, adrs)
        adrs.set_key_and_mask(1)
        bitmask = _prf(params, seed, adrs)
        tmp = _core_hash(params, _HASH_F, key, _xor(tmp, bitmask))
    return tmp


def _base_w(data: bytes, log_w: int, out_len: int) -> list[int]:
    mask = (1 << log_w) - 1
    out = []
    bits = 0
    total = 0
    for byte in data:
        total = (total << 8) | byte
        bits += 8
        while bits >= log_w and len(out) < out_len:
            bits -= log_w
            out.append((total >> bits) & mask)
        if len(out) >= out_len:
            break
    return out


def _chain_lengths(params: Params, msg: bytes) -> list[int]:
    lengths = _base_w(msg, params.log_w, params.wots_len1)
    csum = sum(params.w - 1 - v for v in lengths)
    csum_bits = params.wots_len2 * params.log_w
    csum <<= (8 - csum_bits % 8) % 8
    csum_bytes = csum.to_bytes((csum_bits + 7) // 8, "big")
    return lengths + _base_w(csum_bytes, params.log_w, params.wots_len2)


def _wots_pk_from_sig(params, sig_ots, msg, seed, adrs) -> list[bytes]:
    pk = []
    for i, length in enumerate(_chain_lengths(params, msg)):
        adrs.set_chain(i)
        pk.append(_chain(params, sig_ots[i], length, params.w - 1 - length, seed, adrs))
    return pk


def _ltree(params: Params, pk: list[bytes], seed: bytes, adrs: _Address) -> bytes:
    nodes = list(pk)
    height = 0
    while len(nodes) > 1:
        adrs.set_tree_height(height)
        parents = []
        for i in range(len(nodes) // 2):
            adrs.set_tree_index(i)
            parents.append(_rand_hash(params, nodes[2 * i], nodes[2 * i + 1], seed, adrs))
        if len(nodes) % 2 == 1:
            parents.append(nodes[-1])
        nodes = parents
        height += 1
    return nodes[0]


def _root_from_sig(params, idx_leaf, sig_ots, auth, msg, seed, layer, tree) -> bytes:
    ots_adrs = _Address(layer, tree)
    ots_adrs.set_type(_ADRS_OTS)
    ots_adrs.set_ots(idx_leaf)
    pk_ots = _wots_pk_from_sig(params, sig_ots, msg, seed, ots_adrs)

    ltree_adrs = _Address(layer, tree)
    ltree_adrs.set_type(_ADRS_LTREE)
    ltree_adrs.set_ltree(idx_leaf)
    node = _ltree(params, pk_ots, seed, ltree_adrs)

    tree_adrs = _Address(layer, tree)
    tree_adrs.set_type(_ADRS_HASHTREE)
    tree_adrs.set_tree_index(idx_leaf)
    for k in range(params.tree_height):
        tree_adrs.set_tree_height(k)
        if (idx_leaf >> k) & 1 == 0:
            tree_adrs.set_tree_index(tree_adrs.get_tree_index() // 2)
            node = _rand_hash(params, node, auth[k], seed, tree_adrs)
        else:
            tree_adrs.set_tree_index((tree_adrs.get_tree_index() - 1) // 2)
            node = _rand_hash(params, auth[k], node, seed, tree_adrs)
    return node


def _h_msg(params: Params, r: bytes, root: bytes, idx: int, message: bytes) -> bytes:
    return _core_hash(params, _HASH_MSG, r + root + idx.to_bytes(params.n, "big"), message)


# =============================================================================
# Keys and verification
# =============================================================================

@dataclass(frozen=True)
class PublicKey:
    """XMSS^MT public key."""
    params: Params
    root: bytes
    seed: bytes

    @classmethod
    def from_bytes(cls, data: bytes) -> "PublicKey":
        """
        Parse OID || root || pub_seed.

        Raises:
            ValueError: If the OID is unknown or the length is wrong
        """
        if len(data) < 4:
            raise ValueError(f"XMSS^MT public key too short: {len(data)} bytes")
        oid = int.from_bytes(data[:4], "big")
        params = PARAMS.get(oid)
        if params is None:
            raise ValueError(f"Unknown XMSS^MT OID: {oid:#010x}")
        if len(data) != params.public_key_size:
            raise ValueError(
                f"XMSS^MT public key for {params.name} must be "
                f"{params.public_key_size} bytes, got {len(data)}"
            )
        n = params.n
        return cls(params=params, root=bytes(data[4:4 + n]), seed=bytes(data[4 + n:]))

    def to_bytes(self) -> bytes:
        return self.params.oid.to_bytes(4, "big") + self.root + self.seed


def verify(public_key: bytes, message: bytes, signature: bytes) -> bool:
    """
    Verify an XMSS^MT signature on message.

    Malformed keys or signatures yield False rather than an exception.
    """
    try:
        pk = PublicKey.from_bytes(public_key)
    except ValueError as e:
        logger.debug(f"Rejecting XMSS^MT public key: {e}")
        return False

    params = pk.params
    n = params.n
    if len(signature) != params.signature_size:
        logger.debug(
            f"Rejecting XMSS^MT signature: {len(signature)} bytes, "
            f"expected {params.signature_size} for {params.name}"
        )
        return False

    idx = int.from_bytes(signature[:params.idx_bytes], "big")
    if idx >= 1 << params.full_height:
        return False
    offset = params.idx_bytes
    r = signature[offset:offset + n]
    offset += n

    node = _h_msg(params, r, pk.root, idx, message)
    leaf_mask = (1 << params.tree_height) - 1
    idx_leaf = idx & leaf_mask
    idx_tree = idx >> params.tree_height

    for layer in range(params.d):
        sig_ots = [signature[offset + i * n:offset + (i + 1) * n] for i in range(params.wots_len)]
        offset += params.wots_len * n
        auth = [signature[offset + i * n:offset + (i + 1) * n] for i in range(params.tree_height)]
        offset += params.tree_height * n

        node = _root_from_sig(params, idx_leaf, sig_ots, auth, node, pk.seed, layer, idx_tree)

        idx_leaf = idx_tree & leaf_mask
        idx_tree >>= params.tree_height

    return hmac.compare_digest(node, pk.root)


class PrivateKey:
    """
    Stateful XMSS^MT private key held in memory.

    Every signature consumes one one-time index; reusing an index would
    break the scheme, so the counter only moves forward.
    """

    def __init__(self, params: Params, sk_seed: bytes, sk_prf: bytes, pub_seed: bytes, index: int = 0):
        self.params = params
        self._sk_seed = sk_seed
        self._sk_prf = sk_prf
        self._pub_seed = pub_seed
        self._index = index
        self._trees: dict[tuple[int, int], list[list[bytes]]] = {}
        top = self._tree(params.d - 1, 0)
        self._root = top[-1][0]

    @property
    def index(self) -> int:
        """Next unused one-time index."""
        return self._index

    @property
    def remaining(self) -> int:
        return (1 << self.params.full_height) - self._index

    def public_key(self) -> PublicKey:
        return PublicKey(params=self.params, root=self._root, seed=self._pub_seed)

    def _wots_sk(self, layer: int, tree: int, leaf: int) -> list[bytes]:
        adrs = _Address(layer, tree)
        adrs.set_type(_ADRS_OTS)
        adrs.set_ots(leaf)
        sk = []
        for i in range(self.params.wots_len):
            adrs.set_chain(i)
            sk.append(_prf(self.params, self._sk_seed, adrs))
        return sk

    def _leaf(self, layer: int, tree: int, leaf: int) -> bytes:
        params = self.params
        ots_adrs = _Address(layer, tree)
        ots_adrs.set_type(_ADRS_OTS)
        ots_adrs.set_ots(leaf)
        pk = []
        for i, sk in enumerate(self._wots_sk(layer, tree, leaf)):
            ots_adrs.set_chain(i)
            pk.append(_chain(params, sk, 0, params.w - 1, self._pub_seed, ots_adrs))

        ltree_adrs = _Address(layer, tree)
        ltree_adrs.set_type(_ADRS_LTREE)
        ltree_adrs.set_ltree(leaf)
        return _ltree(params, pk, self._pub_seed, ltree_adrs)

    def _tree(self, layer: int, tree: int) -> list[list[bytes]]:
        """All levels of a subtree, leaves first, root last."""
        key = (layer, tree)
        if key in self._trees:
            return self._trees[key]

        levels = [[self._leaf(layer, tree, i) for i in range(1 << self.params.tree_height)]]
        adrs = _Address(layer, tree)
        adrs.set_type(_ADRS_HASHTREE)
        for height in range(self.params.tree_height):
            below = levels[-1]
            level = []
            for j in range(len(below) // 2):
                adrs.set_tree_height(height)
                adrs.set_tree_index(j)
                level.append(_rand_hash(self.params, below[2 * j], below[2 * j + 1], self._pub_seed, adrs))
            levels.append(level)

        # Only subtrees on the current signing path are kept
        self._trees = {k: v for k, v in self._trees.items() if k[0] != layer}
        self._trees[key] = levels
        return levels

    def _wots_sign(self, msg: bytes, layer: int, tree: int, leaf: int) -> bytes:
        params = self.params
        adrs = _Address(layer, tree)
        adrs.set_type(_ADRS_OTS)
        adrs.set_ots(leaf)
        parts = []
        sk = self._wots_sk(layer, tree, leaf)
        for i, length in enumerate(_chain_lengths(params, msg)):
            adrs.set_chain(i)
            parts.append(_chain(params, sk[i], 0, length, self._pub_seed, adrs))
        return b"".join(parts)

    def sign(self, message: bytes) -> bytes:
        """
        Sign message with the next one-time index.

        Raises:
            ValueError: If all one-time indices are used up
        """
        params = self.params
        if self._index >= 1 << params.full_height:
            raise ValueError("XMSS^MT private key exhausted")
        idx = self._index
        self._index += 1

        r = _core_hash(params, _HASH_PRF, self._sk_prf, idx.to_bytes(32, "big"))
        node = _h_msg(params, r, self._root, idx, message)

        out = [idx.to_bytes(params.idx_bytes, "big"), r]
        leaf_mask = (1 << params.tree_height) - 1
        idx_leaf = idx & leaf_mask
        idx_tree = idx >> params.tree_height
        for layer in range(params.d):
            levels = self._tree(layer, idx_tree)
            out.append(self._wots_sign(node, layer, idx_tree, idx_leaf))
            out.extend(levels[k][(idx_leaf >> k) ^ 1] for k in range(params.tree_height))
            node = levels[-1][0]
            idx_leaf = idx_tree & leaf_mask
            idx_tree >>= params.tree_height
        return b"".join(out)


def generate_keypair(name: str = "XMSSMT-SHA2_20/4_256", seed: bytes | None = None) -> tuple[PrivateKey, PublicKey]:
    """
    Generate an XMSS^MT key pair.

    Args:
        name: RFC 8391 parameter set name
        seed: Optional 3n-byte seed for deterministic keys

    Returns:
        Tuple of (private_key, public_key)
    """
    params = params_by_name(name)
    n = params.n
    if seed is None:
        seed = secrets.token_bytes(3 * n)
    if len(seed) != 3 * n:
        raise ValueError(f"XMSS^MT seed for {name} must be {3 * n} bytes, got {len(seed)}")
    sk = PrivateKey(params, sk_seed=seed[:n], sk_prf=seed[n:2 * n], pub_seed=seed[2 * n:])
    return sk, sk.public_key()
