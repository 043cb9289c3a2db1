import argparse
import pathlib
import sys

import config
import contact_ledger
import ledger_io


def create_ledger(filename):
    if pathlib.Path(filename).exists() and pathlib.Path(filename).stat().st_size > 0:
        print(f"{filename} already exists and has data. Not overwriting it.")
        return 1
    ledger_io.create(filename)
    print(f"Created {filename}")
    return 0


def verify_ledger(filename):
    if not pathlib.Path(filename).exists():
        print(f"{filename} does not exist.")
        return 1
    if not ledger_io.check_header(filename):
        print(f"{filename} has an unexpected header. Expected: {','.join(ledger_io.HEADER)}")
        return 1
    records = ledger_io.retrieve(filename)
    active = {rec.company_id for rec in records if rec.is_contacted}
    print(f"{filename} OK. {len(records)} records for {len(active)} contacted companies.")
    return 0


def lookup_company(ledger, company_id):
    status = ledger.lookup(company_id)
    if status.is_contacted:
        print(f"{company_id} was contacted by {status.contactor_name}")
    else:
        print(f"{company_id} has not been contacted")
    return 0


def dump_ledger(ledger):
    for rec in ledger.active_records():
        print(f"{rec.company_id},{rec.company_name},{rec.contactor_name},{rec.timestamp}")
    return 0


def main(argv=None):
    parser=argparse.ArgumentParser()
    parser.add_argument('-c','--create',action="store_true",required=False,help='Create an empty ledger file with headers. (Will not touch a file that has data.)')
    parser.add_argument('-v','--verify',action="store_true",required=False,help='Check the ledger header and count its records')
    parser.add_argument('-l','--lookup',required=False,help='Show whether the given companyId has been contacted')
    parser.add_argument('-d','--dump',action="store_true",required=False,help='Print the active record for every contacted company')
    parser.add_argument('-t','--template',required=False,help='Write a yaml config file holding the default settings to this path')
    parser.add_argument('filename', help = "The name or path/name to the ledger csv file to perform operations on.")
    args = parser.parse_args(argv)

    if args.template:
        config.config(environ={}).save(args.template)
        print(f"Wrote default settings to {args.template}")
    if args.create:
        return create_ledger(args.filename)
    if args.verify:
        return verify_ledger(args.filename)
    if args.lookup or args.dump:
        try:
            ledger = contact_ledger.ContactLedger(args.filename).initialize()
        except contact_ledger.StorageError as e:
            print(str(e))
            return 1
        if args.lookup:
            lookup_company(ledger, args.lookup)
        if args.dump:
            dump_ledger(ledger)
    return 0


if __name__ == "__main__":
    sys.exit(main())
