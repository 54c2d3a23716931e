"""
Bonding Curve Package Initialization

This package provides a constant-product bonding curve engine for token launches on Solana,
served over the Model Context Protocol (MCP). Buyers and sellers trade a token against a SOL
reserve at a price set by the curve's reserves alone; once the reserve reaches the migration
threshold, trading stops and the reserves move to an external liquidity venue.

The package includes:
- Integer-only pricing with virtual liquidity, plus alternate curve shapes
- Fee calculation and slippage-bound enforcement
- A one-way migration state machine
- Ledger and venue interfaces with in-memory implementations
- Per-curve serialized, atomic trade execution
- Rate limiting and custom error handling
- MCP server implementation for easy integration
"""
