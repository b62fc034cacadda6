"""Minimal ABIs for the payment-gateway and auto-swap contracts."""

from typing import Dict, List

# Gateway payment record status (`getPayment(...).status`).
PAYMENT_STATUS_NONE = 0
PAYMENT_STATUS_FUNDED = 1
PAYMENT_STATUS_SETTLED = 2
PAYMENT_STATUS_REFUNDED = 3

# Emitted by the gateway when the payer funds a reference; topic1 is the reference.
PAYMENT_FUNDED_SIGNATURE = "PaymentFunded(bytes32,address,address,uint256)"

PAYMENT_GATEWAY_ABI: List[Dict] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "name": "reference", "type": "bytes32"},
            {"indexed": True, "name": "payer", "type": "address"},
            {"indexed": False, "name": "token", "type": "address"},
            {"indexed": False, "name": "amount", "type": "uint256"},
        ],
        "name": "PaymentFunded",
        "type": "event",
    },
    {
        "inputs": [{"name": "reference", "type": "bytes32"}],
        "name": "getPayment",
        "outputs": [
            {"name": "payer", "type": "address"},
            {"name": "token", "type": "address"},
            {"name": "amount", "type": "uint256"},
            {"name": "status", "type": "uint8"},
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "reference", "type": "bytes32"},
            {"name": "settlementToken", "type": "address"},
        ],
        "name": "settlePayment",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

AUTO_SWAP_ABI: List[Dict] = [
    {
        "inputs": [
            {"name": "tokenIn", "type": "address"},
            {"name": "tokenOut", "type": "address"},
            {"name": "amountIn", "type": "uint256"},
        ],
        "name": "quote",
        "outputs": [{"name": "amountOut", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [
            {"name": "reference", "type": "bytes32"},
            {"name": "tokenIn", "type": "address"},
            {"name": "tokenOut", "type": "address"},
            {"name": "amountIn", "type": "uint256"},
            {"name": "amountOutMin", "type": "uint256"},
            {"name": "deadline", "type": "uint256"},
        ],
        "name": "swapExactIn",
        "outputs": [{"name": "amountOut", "type": "uint256"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]
