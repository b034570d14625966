#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: A Lending Market Step by Step

A guided walk through one lending market, from an empty ledger to a
liquidation and a flash loan. Each step builds on the previous one. Press
Enter to advance.

WHAT YOU'LL LEARN:
  1-3:  Foundation   - Tokens, issuance from the system wallet, oracles and a market
  4-6:  Pool         - Supplying for shares, borrowing against collateral, interest
  7-8:  Risk         - Price shocks, health, and liquidation with a bonus
  9-10: Atomicity    - Flash loans, rollback, and the conservation proof

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
import sys

from lending import (
    Ledger, LendingProgram, Move, SYSTEM_WALLET,
    build_transaction, token,
    FlashLoanNotRepaid, InsufficientCollateral,
    market_health_snapshot, stress_liquidations,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    # Prices in 6-decimal fixed point
    usdc_price: int = 1_000_000
    eth_price: int = 3_000_000_000
    crash_price: int = 2_000_000_000

    # Amounts in native units (6 decimals)
    issued_usdc: int = 1_000_000 * 10**6
    issued_eth: int = 1_000 * 10**6
    supplied: int = 100_000 * 10**6
    collateral: int = 10 * 10**6
    borrowed: int = 20_000 * 10**6
    flash_amount: int = 50_000 * 10**6

    # Risk parameters (basis points)
    collateral_factor: int = 8000
    liquidation_threshold: int = 8500


CONFIG = DemoConfig()

QUICK_MODE = "--quick" in sys.argv

USERS = ("alice", "bob", "carol", "liquidator")


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def usd(amount: int) -> str:
    return f"{amount / 10**6:,.2f}"


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-3)
# ============================================================================

def step_01_tokens():
    step_header(1, "Tokens and Wallets",
        "A ledger holds integer balances of tokens in wallets.")

    print(">>> ledger = Ledger('lending-demo')")
    ledger = Ledger("lending-demo", verbose=True)
    ledger.register_unit(token("USDC", "USD Coin", 6))
    ledger.register_unit(token("ETH", "Ether", 6))
    for wallet in ("admin",) + USERS:
        ledger.register_wallet(wallet)

    section_header("Key Insight")
    print("""
    Balances are integers in native units: 1 USDC is 1_000_000 units.
    No floats touch the books.
    """)
    return ledger


def step_02_issuance(ledger: Ledger):
    step_header(2, "Issuance",
        "Tokens enter the economy from the system wallet.")

    moves = []
    for user in USERS:
        moves.append(Move(CONFIG.issued_usdc, "USDC", SYSTEM_WALLET, user, "issuance"))
        moves.append(Move(CONFIG.issued_eth, "ETH", SYSTEM_WALLET, user, "issuance"))
    ledger.execute(build_transaction(ledger, moves))

    section_header("Balances")
    for user in USERS:
        print(f"{user:12s} USDC {usd(ledger.get_balance(user, 'USDC')):>16s}   "
              f"ETH {usd(ledger.get_balance(user, 'ETH')):>10s}")


def step_03_market(ledger: Ledger) -> tuple:
    step_header(3, "Oracles and a Market",
        "A market lends one asset against another, priced by two oracles.")

    program = LendingProgram(ledger)
    program.initialize("admin")
    program.create_oracle("admin", "USDC", CONFIG.usdc_price, 6)
    program.create_oracle("admin", "ETH", CONFIG.eth_price, 6)
    market = program.create_market(
        "admin", 1, "USDC", "ETH", CONFIG.collateral_factor, CONFIG.liquidation_threshold
    )
    for user in USERS:
        program.open_position(user, market)

    record = program.market(market)
    section_header("Market")
    print(f"Address:            {record.address}")
    print(f"Supply vault:       {record.supply_vault}")
    print(f"Collateral vault:   {record.collateral_vault}")
    print(f"Collateral factor:  {record.collateral_factor / 100:.0f}%")
    print(f"Liquidation line:   {record.liquidation_threshold / 100:.0f}%")
    return program, market


# ============================================================================
# PHASE 2: POOL (Steps 4-6)
# ============================================================================

def step_04_supply(program: LendingProgram, market: str):
    step_header(4, "Supplying Liquidity",
        "Deposits mint shares; shares redeem at an exchange rate that never falls below par.")

    shares = program.supply("alice", market, CONFIG.supplied)
    print(f"alice supplied {usd(CONFIG.supplied)} USDC and received {usd(shares)} shares")


def step_05_borrow(program: LendingProgram, market: str):
    step_header(5, "Borrowing",
        "Debt value may not exceed collateral value times the collateral factor.")

    try:
        program.borrow("bob", market, CONFIG.collateral, CONFIG.borrowed * 2)
    except InsufficientCollateral as e:
        print(f"Rejected: {e}")

    program.borrow("bob", market, CONFIG.collateral, CONFIG.borrowed)
    health = program.position_health("bob", market)
    section_header("bob's position")
    print(f"Collateral value:   {health.collateral_value:,}")
    print(f"Borrow value:       {health.borrow_value:,}")
    print(f"Borrowing limit:    {health.max_borrow_value:,}")
    print(f"Health factor:      {health.health_factor / 10**9:.3f}")


def step_06_interest(program: LendingProgram, market: str):
    step_header(6, "Interest",
        "Debt accrues simple interest per tick; repayment books it into the pool.")

    program.ledger.advance(100)
    program.update_oracle_price("admin", "USDC", CONFIG.usdc_price)
    program.update_oracle_price("admin", "ETH", CONFIG.eth_price)
    repaid = program.repay("bob", market, CONFIG.borrowed // 2)
    position = program.position("bob", market)
    print(f"bob repaid {usd(repaid)} USDC, owes {usd(position.borrowed_amount)} USDC")
    print(f"Pool deposits now {usd(program.market(market).total_supply_deposits)} USDC")


# ============================================================================
# PHASE 3: RISK (Steps 7-8)
# ============================================================================

def step_07_stress(program: LendingProgram, market: str):
    step_header(7, "Stress Testing",
        "How much debt crosses the liquidation line if ETH falls?")

    program.borrow("carol", market, CONFIG.collateral, CONFIG.borrowed)
    shocks = [0.0, 0.1, 0.2, 0.3, 0.5]
    result = stress_liquidations(program.ledger, market, shocks)
    for shock, count, debt in zip(result.shocks, result.liquidatable_count, result.debt_at_risk):
        print(f"ETH -{shock:4.0%}: {count} liquidatable, {usd(int(debt)):>12s} USDC at risk")


def step_08_liquidation(program: LendingProgram, market: str):
    step_header(8, "Liquidation",
        "A liquidator repays debt and seizes collateral with a 10% bonus.")

    program.update_oracle_price("admin", "ETH", CONFIG.crash_price)
    snapshot = market_health_snapshot(program.ledger, market)
    print(f"Liquidatable after the crash: {list(snapshot.liquidatable_positions)}")

    amount = CONFIG.collateral // 2
    seized = program.liquidate("liquidator", market, "carol", amount)
    print(f"liquidator repaid {amount:,} USDC units and seized {seized:,} ETH units")

    section_header("Key Insight")
    print("""
    Liquidation prices both legs with ONE oracle, so the seizure is the
    repaid amount in native units plus the bonus, whatever the two prices are.
    """)


# ============================================================================
# PHASE 4: ATOMICITY (Steps 9-10)
# ============================================================================

def step_09_flash_loan(program: LendingProgram, market: str):
    step_header(9, "Flash Loans",
        "Borrow without collateral, as long as the vault is whole again by the end.")

    def greedy(ctx):
        ctx.transfer("carol", ctx.vault, ctx.amount)

    try:
        program.flash_loan(market, "carol", CONFIG.flash_amount, greedy, ["carol"])
    except FlashLoanNotRepaid as e:
        print(f"Rolled back: {e}")

    fee = program.flash_loan(market, "carol", CONFIG.flash_amount,
                             lambda ctx: ctx.repay(), ["carol"])
    print(f"Second attempt repaid with fee {usd(fee)} USDC")


def step_10_conservation(program: LendingProgram):
    step_header(10, "Conservation Proof",
        "Every token issued is still somewhere: no instruction created or destroyed value.")

    result = program.ledger.verify_double_entry()
    for symbol, supply in result["supplies"].items():
        print(f"{symbol:6s} total {supply}")
    print(f"\nConservation holds: {result['valid']}")


def main():
    ledger = step_01_tokens()
    wait_for_enter()
    step_02_issuance(ledger)
    wait_for_enter()
    program, market = step_03_market(ledger)
    wait_for_enter()

    step_04_supply(program, market)
    wait_for_enter()
    step_05_borrow(program, market)
    wait_for_enter()
    step_06_interest(program, market)
    wait_for_enter()

    step_07_stress(program, market)
    wait_for_enter()
    step_08_liquidation(program, market)
    wait_for_enter()

    step_09_flash_loan(program, market)
    wait_for_enter()
    step_10_conservation(program)

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See lending/program.py for the full instruction surface
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
