"""Escrow protocol constants.

Keep this file aligned with the constants compiled into the deal contract
(`deal.fc`) and with the cell format of the execution environment.
"""

# Cells
CELL_MAX_BITS = 1023
CELL_MAX_REFS = 4
BOC_MAGIC = bytes.fromhex("b5ee9c72")

# Field widths
DEAL_ID_BITS = 64
DEAL_STATE_BITS = 2
TIMESTAMP_BITS = 64
OP_CODE_BITS = 32
QUERY_ID_BITS = 64
PUBLIC_KEY_BYTES = 32
SIGNATURE_BYTES = 64
ADDRESS_HASH_BYTES = 32
COINS_LEN_BITS = 4
MAX_COINS_BYTES = 15

# Units
COIN_DECIMALS = 9
COIN_VALUE = 10**COIN_DECIMALS

# Deal
DEAL_WORKCHAIN = 0
# Reserve covering execution overhead, added on top of fee + coins when funding.
EXCESS_AMOUNT = COIN_VALUE // 20  # 0.05 coin
GET_DEAL_STATE_METHOD = "get_deal_state"
DEAL_STACK_SIZE = 9
# Smallest coins amount a new deal may commit.
MIN_DEAL_AMOUNT = COIN_VALUE // 100  # 0.01 coin

# Outbound message send mode: pay transfer fees separately from the value.
SEND_MODE_PAY_FEES_SEPARATELY = 1

# Get-method exit codes meaning "no contract at this address".
ABSENT_EXIT_CODES = frozenset({-13, -256})

# Query client
DEFAULT_TONCENTER_ENDPOINT = "https://toncenter.com/api/v2"
DEFAULT_REQUEST_TIMEOUT = 30.0
