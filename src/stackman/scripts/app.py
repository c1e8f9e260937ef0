#!/usr/bin/env python
import os
import sys
import getpass
import argparse
from argparse import RawTextHelpFormatter

import stackman
from stackman import log
from stackman.config import StackmanSettings, load_settings
from stackman.exceptions import PreconditionError, StackmanError
from stackman.loggers.logger import set_verbosity
from stackman.models import ProvisionRequest
from stackman.provisioner import (
    ProvisioningOrchestrator,
    reboot_vm,
    set_volume_bootable,
    stop_vm,
)
from stackman.providers.openstack.client import RestClient
from stackman.providers.openstack.identity import authenticate
from stackman.providers.openstack.session import OpenStackSession
from stackman.resources import (
    DISK_FORMATS,
    create_volume,
    delete_image,
    delete_port,
    delete_vm,
    delete_volume,
    upload_image,
)
from stackman.token_cache import TokenCache
from stackman.utils.netargs import parse_network_requests
from stackman.utils.output import format_summary
from stackman.utils.templating import read_user_data


def parse_args():

    parser = argparse.ArgumentParser(
        description=(
            f"Stackman version {stackman.metadata.version}\n"
            "Provision virtual machines on an OpenStack compatible cloud\n"
            "\n"
            "usage example\n"
            "\n"
            "   auth\n"
            "       # get a token for the host/project of the settings file\n"
            "       $ stackman auth\n"
            "\n"
            "   create vm\n"
            "       # boot from an image, one interface with a fixed ip\n"
            "       $ stackman create vm --name web1 --flavor small --image ubuntu-22.04 \\\n"
            "             --networks prod-net --ips 10.0.0.5\n"
            "\n"
            "       # blank boot volume, two interfaces, the second one with a mac\n"
            "       $ stackman create vm --name pxe1 --flavor small --size 40 \\\n"
            "             --networks netA,netB --macs auto,fa:16:3e:00:00:01\n"
            "\n"
            "   create image / volume\n"
            "       $ stackman create image --name rocky9 --file Rocky-9.qcow2\n"
            "       $ stackman create volume --name data1 --size 100\n"
            "\n"
            "   delete\n"
            "       $ stackman delete vm web1\n"
            "       $ stackman delete volume data1\n"
            "\n"
            "   reboot\n"
            "       $ stackman reboot soft web1\n"
            "       $ stackman reboot hard web1\n"
            "\n"
            "   stop\n"
            "       $ stackman stop web1 --wait\n"
            "\n"
            "   bootable\n"
            "       $ stackman bootable web1-boot true\n"
        ),
        formatter_class=RawTextHelpFormatter
    )

    parser.add_argument(
        '--config',
        type=str,
        help='the settings file (default ~/.config/stackman/stackman.yml)',
        dest='config',
        default=None
    )

    parser.add_argument(
        '--host',
        type=str,
        help='the control plane host, overrides the settings',
        dest='host',
        default=None
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        default=False,
        help='log the api requests and responses'
    )

    parser.add_argument(
        '--version',
        action='count',
        default=0,
        help='display the version and exit'
    )

    subparsers = parser.add_subparsers(help="sub-commands for stackman")

    #
    # sub parser for the 'auth' subcommand
    #
    parser_auth = subparsers.add_parser('auth', help='authenticate and cache a token')
    parser_auth.add_argument('--domain', type=str, default=None, help='the identity domain')
    parser_auth.add_argument('--project', type=str, default=None, help='the project name')
    parser_auth.add_argument('--username', type=str, default=None, help='the user name')
    parser_auth.add_argument(
        '--force', action='store_true', default=False,
        help='request a new token even if a valid one is cached')
    parser_auth.set_defaults(func=cmd_auth)

    #
    # sub parser for the 'create' subcommand
    #
    parser_create = subparsers.add_parser('create', help='create resources')
    subparsers_create = parser_create.add_subparsers(help="sub-commands for stackman create")

    #
    # sub parser for the 'create vm' subsubcommand
    #
    parser_create_vm = subparsers_create.add_parser('vm', help='create a virtual machine')
    parser_create_vm.add_argument('--name', type=str, required=True, help='the vm name')
    parser_create_vm.add_argument('--flavor', type=str, default=None, help='the flavor name or id')
    parser_create_vm.add_argument(
        '--image', type=str, default=None,
        help='the image name or id, a blank boot volume is created without one')
    parser_create_vm.add_argument(
        '--networks', type=str, default=None, help='comma separated network names or ids')
    parser_create_vm.add_argument(
        '--ips', type=str, default=None,
        help='comma separated fixed ips, one per network (auto for none)')
    parser_create_vm.add_argument(
        '--macs', type=str, default=None,
        help='comma separated mac addresses, one per network (auto for none)')
    parser_create_vm.add_argument(
        '--size', type=int, default=None, help='the boot volume size in GiB')
    parser_create_vm.add_argument(
        '--disk-bus', type=str, default=None, dest='disk_bus', help='the boot volume disk bus')
    parser_create_vm.add_argument(
        '--user-data', type=str, default=None, dest='user_data',
        help='a cloud-init user-data file (rendered with jinja2 if it ends in .j2)')
    parser_create_vm.add_argument(
        '--netboot', action='store_true', default=False,
        help='boot from the network, the image is ignored')
    parser_create_vm.add_argument(
        '--shutdown', action='store_true', default=False,
        help='power off the vm once its networks are attached')
    parser_create_vm.add_argument(
        '--wait-shutdown', action='store_true', default=False, dest='wait_shutdown',
        help='wait for the vm to be SHUTOFF (implies --shutdown)')
    parser_create_vm.add_argument(
        '--json', action='store_true', default=False, help='print the summary as json')
    parser_create_vm.set_defaults(func=cmd_create_vm)

    #
    # sub parser for the 'create image' subsubcommand
    #
    parser_create_image = subparsers_create.add_parser(
        'image', help='create an image and upload its data')
    parser_create_image.add_argument('--name', type=str, required=True, help='the image name')
    parser_create_image.add_argument(
        '--file', type=str, required=True, dest='path', help='the image file to upload')
    parser_create_image.add_argument(
        '--format', type=str, default=None, dest='disk_format', choices=DISK_FORMATS,
        help='the disk format, guessed from the file extension by default')
    parser_create_image.add_argument(
        '--json', action='store_true', default=False, help='print the result as json')
    parser_create_image.set_defaults(func=cmd_create_image)

    #
    # sub parser for the 'create volume' subsubcommand
    #
    parser_create_volume = subparsers_create.add_parser('volume', help='create a blank volume')
    parser_create_volume.add_argument('--name', type=str, required=True, help='the volume name')
    parser_create_volume.add_argument(
        '--size', type=int, required=True, help='the volume size in GiB')
    parser_create_volume.add_argument(
        '--description', type=str, default='', help='the volume description')
    parser_create_volume.add_argument(
        '--type', type=str, default=None, dest='volume_type',
        help='the volume type, the configured volume_type by default')
    parser_create_volume.add_argument(
        '--json', action='store_true', default=False, help='print the result as json')
    parser_create_volume.set_defaults(func=cmd_create_volume)

    #
    # sub parser for the 'delete' subcommand
    #
    parser_delete = subparsers.add_parser('delete', help='delete resources')
    subparsers_delete = parser_delete.add_subparsers(help="sub-commands for stackman delete")
    for kind, what in (('vm', 'the vm name or id'),
                       ('image', 'the image name or id'),
                       ('volume', 'the volume name or id'),
                       ('port', 'the port id')):
        parser_delete_kind = subparsers_delete.add_parser(kind, help=f'delete a {kind}')
        parser_delete_kind.add_argument('ref', type=str, help=what)
        parser_delete_kind.set_defaults(func=cmd_delete, kind=kind)

    #
    # sub parser for the 'reboot' subcommand
    #
    parser_reboot = subparsers.add_parser('reboot', help='reboot a virtual machine')
    subparsers_reboot = parser_reboot.add_subparsers(help="sub-commands for stackman reboot")
    for kind in ('hard', 'soft'):
        parser_reboot_kind = subparsers_reboot.add_parser(kind, help=f'{kind} reboot a vm')
        parser_reboot_kind.add_argument('vm', type=str, help='the vm name or id')
        parser_reboot_kind.add_argument(
            '--json', action='store_true', default=False, help='print the result as json')
        parser_reboot_kind.set_defaults(func=cmd_reboot, hard=kind == 'hard')

    #
    # sub parser for the 'stop' subcommand
    #
    parser_stop = subparsers.add_parser('stop', help='gracefully power off a virtual machine')
    parser_stop.add_argument('vm', type=str, help='the vm name or id')
    parser_stop.add_argument(
        '--wait', action='store_true', default=False, help='wait for the vm to be SHUTOFF')
    parser_stop.add_argument(
        '--json', action='store_true', default=False, help='print the result as json')
    parser_stop.set_defaults(func=cmd_stop)

    #
    # sub parser for the 'bootable' subcommand
    #
    parser_bootable = subparsers.add_parser('bootable', help='set the bootable flag of a volume')
    parser_bootable.add_argument('volume', type=str, help='the volume name or id')
    parser_bootable.add_argument('flag', choices=['true', 'false'], help='the bootable flag')
    parser_bootable.set_defaults(func=cmd_bootable)

    return parser


def vm_result(vm) -> dict:
    return {
        'id': vm.id,
        'name': vm.name,
        'status': vm.status,
        'power_state': f"{vm.power_state} ({vm.power_state_label})",
    }


def open_session(settings: StackmanSettings) -> OpenStackSession:
    """
    Build a session from the token cached for the configured host.
    """
    if not settings.host:
        raise PreconditionError("no host configured; pass --host or set 'host' in the settings")
    token = TokenCache(settings.token_cache_dir).load_token(settings.host)
    return OpenStackSession(token, settings)


def cmd_auth(settings: StackmanSettings, args):
    if not settings.host:
        raise PreconditionError("no host configured; pass --host or set 'host' in the settings")

    domain = args.domain or settings.domain
    project = args.project or settings.project
    username = args.username or settings.username
    if not project:
        raise PreconditionError("no project configured; pass --project or set 'project'")
    if not username:
        username = input('username: ').strip()

    password = os.environ.get('STACKMAN_PASSWORD') or getpass.getpass('password: ')

    token = authenticate(
        settings.host, domain, project, username, password,
        cache=TokenCache(settings.token_cache_dir),
        force=args.force,
        client=open_client(settings))
    print(format_summary({
        'host': token.host,
        'project': token.project,
        'expires_at': token.expires_at.isoformat(),
        'endpoints': dict(token.endpoints),
    }))


def open_client(settings: StackmanSettings):
    return RestClient(
        timeout=settings.request_timeout,
        verify=settings.verify_tls,
        compute_api_version=settings.compute_api_version)


def cmd_create_vm(settings: StackmanSettings, args):
    flavor = args.flavor or settings.flavor
    if not flavor:
        raise PreconditionError("no flavor specified; provide --flavor or set 'flavor'")

    networks = parse_network_requests(
        args.networks, args.ips, args.macs, default_networks=settings.networks)

    request = ProvisionRequest(
        name=args.name,
        flavor=flavor,
        image=args.image or (None if args.netboot else settings.image),
        networks=networks,
        volume_size=args.size,
        user_data=read_user_data(args.user_data),
        disk_bus=args.disk_bus,
        netboot=args.netboot,
        power_off=args.shutdown or args.wait_shutdown,
        wait_for_power_off=args.wait_shutdown)

    summary = ProvisioningOrchestrator(open_session(settings), settings).provision(request)
    print(format_summary(summary.to_dict(), as_json=args.json))


def cmd_create_image(settings: StackmanSettings, args):
    image = upload_image(open_session(settings), args.name, args.path, args.disk_format)
    print(format_summary({
        'id': image.id,
        'name': image.name,
        'status': image.status,
        'size': image.size,
    }, as_json=args.json))


def cmd_create_volume(settings: StackmanSettings, args):
    volume = create_volume(
        open_session(settings), args.name, args.size,
        description=args.description, volume_type=args.volume_type)
    print(format_summary({
        'id': volume.id,
        'name': volume.name,
        'size': volume.size,
        'status': volume.status,
        'bootable': volume.bootable,
    }, as_json=args.json))


DELETERS = {
    'vm': delete_vm,
    'image': delete_image,
    'volume': delete_volume,
    'port': delete_port,
}


def cmd_delete(settings: StackmanSettings, args):
    resource_id = DELETERS[args.kind](open_session(settings), args.ref)
    print(f"{args.kind} {resource_id} deleted")


def cmd_reboot(settings: StackmanSettings, args):
    vm = reboot_vm(open_session(settings), args.vm, hard=args.hard)
    print(format_summary(vm_result(vm), as_json=args.json))


def cmd_stop(settings: StackmanSettings, args):
    vm = stop_vm(open_session(settings), args.vm, wait=args.wait)
    print(format_summary(vm_result(vm), as_json=args.json))


def cmd_bootable(settings: StackmanSettings, args):
    set_volume_bootable(open_session(settings), args.volume, bootable=args.flag == 'true')


def main(argv=None):

    arg_parser = parse_args()
    args = arg_parser.parse_args(argv)

    if args.version:
        print(f'v{stackman.metadata.version}')
        sys.exit(0)

    set_verbosity(args.debug)

    if not hasattr(args, 'func'):
        arg_parser.print_help()
        sys.exit(1)

    try:
        settings = load_settings(args.config).override(host=args.host)
        args.func(settings, args)
    except StackmanError as exc:
        log.error(str(exc))
        sys.exit(1)


if __name__ == '__main__':
    main()
