"""ShareSwap: signed trade authorizations against share-token AMM pools."""
