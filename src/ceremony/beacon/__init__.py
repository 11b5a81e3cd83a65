"""Public randomness beacon — round fetch and beacon value derivation."""

from ceremony.beacon.drand import BeaconFetch, BeaconStatus, DrandClient, derive_beacon_hash

__all__ = ["BeaconFetch", "BeaconStatus", "DrandClient", "derive_beacon_hash"]
