from token_bank.clients.bank_client import TokenBankClient
from token_bank.engine.events import NotificationEvent
from token_bank.logging_config import setup_logging

# Reads TOKEN_BANK_* settings and EVM_PRIVATE_KEY from the environment / .env
client = TokenBankClient.from_env()


async def print_notification(event: NotificationEvent, deps):
    print(f"[{event.level.value}] {event.message}")


async def main():
    client.bus.subscribe(NotificationEvent, print_notification)

    if await client.reconnect() is None:
        await client.connect()
    print("Account:", client.account)

    await client.deposit("1")
    await client.permit_deposit("0.5")
    await client.permit2_deposit("0.25")
    await client.withdraw("0.1")

    balances = client.balances
    if balances is not None:
        print(f"Wallet: {balances.token_amount} {balances.token_symbol}")
        print(f"Bank:   {balances.deposit_amount} {balances.token_symbol}")


if __name__ == "__main__":
    import asyncio
    setup_logging("INFO")
    asyncio.run(main())
