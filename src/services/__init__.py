"""Services: upstream clients, token pools, generation, ledgers and storage"""
