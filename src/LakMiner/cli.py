import argparse
import logging
import sys
import threading
from signal import SIGINT , SIGTERM , signal

from .clients.ledger_client import LedgerClient
from .config import ConfigError , check_credentials , load_config , save_config
from .core.events import MiningObserver
from .core.miner import Miner
from .core.state import MinerState
from .logging_config import configure_logging
from .utils.formatting import format_duration , format_hash_rate
from .web import StatusObserver , set_miner_state , start_web_server , update_status


STATE = MinerState()


def _handle_signal(signal_received , frame) :
    STATE.request_shutdown()
    print("Stopping miner after the current round, please wait…")


def build_parser() -> argparse.ArgumentParser :
    parser = argparse.ArgumentParser(prog = "lakminer" , description = "LAK token proof-of-work miner")
    parser.add_argument("--rpc-url" , required = False , help = "JSON-RPC endpoint URL")
    parser.add_argument("--contract" , required = False , help = "Mining contract address")
    parser.add_argument("--workers" , type = int , required = False , help = "Worker processes (0 = one per CPU, min 2)")
    parser.add_argument("--batch-size" , type = int , required = False , help = "Nonces per worker per round")
    parser.add_argument("--max-mining-time" , type = float , required = False , help = "Search budget per snapshot in seconds")
    parser.add_argument("--log-level" , required = False , help = "DEBUG, INFO, WARNING, ...")
    parser.add_argument("--web-port" , type = int , required = False , help = "Web dashboard port (default: 5000)")
    parser.add_argument("--no-web" , action = "store_true" , help = "Disable web dashboard")
    parser.add_argument("--save-config" , action = "store_true" , help = "Persist the effective settings (never the key)")
    parser.add_argument("--verbose" , "-v" , action = "store_true" , help = "Debug logging for LakMiner")
    return parser


def apply_overrides(cfg: dict , args) -> dict :
    if args.rpc_url :
        cfg["rpc"]["url"] = args.rpc_url
    if args.contract :
        cfg["rpc"]["contract_address"] = args.contract
    if args.workers is not None :
        cfg["miner"]["num_workers"] = max(0 , args.workers)
    if args.batch_size :
        cfg["miner"]["batch_size"] = args.batch_size
    if args.max_mining_time is not None :
        cfg["miner"]["max_mining_time_secs"] = args.max_mining_time
    if args.log_level :
        cfg["logging"]["level"] = args.log_level.upper()
    if args.web_port :
        cfg["web"]["port"] = args.web_port
    if args.no_web :
        cfg["web"]["enabled"] = False
    return cfg


def print_final_stats(miner: Miner) -> None :
    stats = miner.stats.snapshot()
    print("\n\nMining stopped. Final stats:")
    print(f"  - Success: {stats.success_count}, Fails: {stats.failure_count}")
    print(f"  - Total Rewards: {stats.total_reward_units} LAK")
    print(f"  - Avg. Hashrate: {format_hash_rate(miner.stats.hashrate())}")
    print(f"  - Runtime: {format_duration(miner.stats.elapsed())}")


def main(argv = None) :
    args = build_parser().parse_args(argv)
    cfg = apply_overrides(load_config() , args)

    configure_logging(cfg["logging"]["level"] , cfg["logging"]["file"] or None , args.verbose)
    logger = logging.getLogger("LakMiner")

    if args.save_config :
        save_config(cfg)
        logger.info("Configuration saved")

    try :
        check_credentials(cfg)
    except ConfigError as e :
        logger.error(str(e))
        sys.exit(1)

    signal(SIGINT , _handle_signal)
    signal(SIGTERM , _handle_signal)

    rpc = cfg["rpc"]
    try :
        ledger = LedgerClient(
            rpc["url"] ,
            rpc["contract_address"] ,
            private_key = cfg["wallet"]["private_key"] ,
            timeout = rpc["request_timeout_secs"] ,
            confirmation_timeout = rpc["confirmation_timeout_secs"] ,
            poll_interval = rpc["poll_interval_secs"] ,
        )
    except Exception as e :
        logger.error(f"Invalid key or contract address: {e}")
        sys.exit(1)
    web_enabled = cfg["web"]["enabled"]
    observer = StatusObserver() if web_enabled else MiningObserver()
    miner = Miner(cfg , ledger , STATE , logger , observer = observer)

    if web_enabled :
        update_status("wallet_address" , ledger.address)
        update_status("contract_address" , ledger.contract_address)
        set_miner_state(STATE)
        web_thread = threading.Thread(
            target = start_web_server , args = (cfg["web"]["host"] , cfg["web"]["port"]) , daemon = True
        )
        web_thread.start()
        logger.info("Web dashboard started on port %s" , cfg["web"]["port"])

    try :
        try :
            miner.initialize()
        except Exception as e :
            logger.error(f"Fatal error during initialization: {e}" , exc_info = True)
            sys.exit(1)
        miner.start()
        print_final_stats(miner)
    finally :
        miner.close()
        ledger.close()
        logger.debug("Ledger connection closed")
