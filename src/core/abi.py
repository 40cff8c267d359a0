# Minimal ABIs for the reward token and the bulk sender helper contract.

TOKEN_ABI = [
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [{"name": "", "type": "uint8"}],
    },
    {
        "name": "balanceOf",
        "type": "function",
        "stateMutability": "view",
        "inputs": [{"name": "account", "type": "address"}],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

BULK_SENDER_ABI = [
    {
        "name": "bulksendToken",
        "type": "function",
        "stateMutability": "payable",
        "inputs": [
            {"internalType": "address", "name": "_tokenAddr", "type": "address"},
            {"internalType": "address[]", "name": "_to", "type": "address[]"},
            {"internalType": "uint256[]", "name": "_value", "type": "uint256[]"},
        ],
        "outputs": [],
    },
]
