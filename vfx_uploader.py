"""CLI for resolving, tagging and uploading VFX renders to their shot folders."""
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from dotenv import load_dotenv

from vfx_upload import Failed, UploadJob, UploadSession, iter_preview_lines
from vfx_upload.config import load_config
from vfx_upload.errors import CatalogError, StorageError
from vfx_upload.logging_setup import setup_logging
from vfx_upload.storage import CredentialStatus


def print_preview(lines: Iterable[str]) -> None:
    for line in lines:
        print(line)


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Upload VFX renders to their shot folders on S3.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Show debug logging.')
    parser.add_argument('--log-dir', help='Also write a timestamped log file to this directory.')
    sub = parser.add_subparsers(dest='command', required=True)

    add = sub.add_parser('add', help='Queue render files and resolve their destinations.')
    add.add_argument('files', nargs='+', help='Render files to queue.')

    sub.add_parser('list', help='Show the queued jobs.')
    sub.add_parser('tag', help='Mux audio and color-tag every pending job with a destination.')
    sub.add_parser('upload', help='Upload every tagged job.')
    sub.add_parser('run', help='Tag, then upload.')

    retry = sub.add_parser('retry', help='Return a failed job to pending.')
    retry.add_argument('job_id', help='Job id or unambiguous prefix.')

    set_path = sub.add_parser('set-path', help='Set a destination key by hand.')
    set_path.add_argument('job_id')
    set_path.add_argument('key', help='Destination key inside the project bucket.')
    set_path.add_argument('--project', help='Project id to assign to the job.')

    remove = sub.add_parser('remove', help='Drop a job from the list.')
    remove.add_argument('job_id')

    sub.add_parser('clear', help='Drop completed jobs from the list.')

    rename = sub.add_parser('rename', help='Rename an uploaded file in its remote folder.')
    rename.add_argument('job_id')
    rename.add_argument('name', help='New file name.')

    delete = sub.add_parser('delete', help='Delete an uploaded file and drop its job.')
    delete.add_argument('job_id')

    import_projects = sub.add_parser('import-projects', help='Replace the project list with a JSON file.')
    import_projects.add_argument('file')

    sub.add_parser('remove-projects', help='Remove every project, including the built-in ones.')

    sub.add_parser('check', help='Check AWS credentials.')
    return parser.parse_args(argv)


def _find_job(session: UploadSession, job_id: str) -> Optional[UploadJob]:
    job = session.find(job_id)
    if job is None:
        print(f"No single job matches {job_id!r}", file=sys.stderr)
    return job


def _require_credentials(session: UploadSession) -> bool:
    status = session.check_credentials()
    if status.is_valid:
        return True
    _report_invalid(status)
    return False


def _report_invalid(status: CredentialStatus) -> None:
    detail = f": {status.message}" if status.message else ''
    print(f"AWS credentials are {status.state.replace('_', ' ')}{detail}", file=sys.stderr)


def _summarize(jobs: List[UploadJob]) -> int:
    failed = [job for job in jobs if isinstance(job.status, Failed)]
    print(f"  Processed: {len(jobs)}")
    print(f"  Failed: {len(failed)}")
    for job in failed:
        print(f"    {job.id[:8]} {job.file_name}: {job.status.message}")
    return 2 if failed else 0


def _run_tagging(session: UploadSession) -> int:
    if not session.can_tag:
        print('Nothing to tag (jobs need a destination path first).')
        return 0
    print('\nTagging...')
    return _summarize(session.start_tagging())


def _run_upload(session: UploadSession) -> int:
    if not session.can_upload:
        print('Nothing to upload (tag pending jobs first).')
        return 0
    print('\nUploading...')
    return _summarize(session.start_upload())


def main(argv: Sequence[str] | None = None) -> int:
    load_dotenv()
    args = parse_args(argv if argv is not None else sys.argv[1:])
    setup_logging(verbose=args.verbose, log_dir=Path(args.log_dir) if args.log_dir else None)

    config = load_config()
    session = UploadSession.from_config(config)
    session.restore()
    command = args.command

    try:
        if command == 'add':
            added = session.add_files([Path(name) for name in args.files])
            print(f"Queued {len(added)} file(s).")
        elif command == 'tag':
            if not _require_credentials(session):
                return 1
            return _run_tagging(session)
        elif command == 'upload':
            if not _require_credentials(session):
                return 1
            return _run_upload(session)
        elif command == 'run':
            if not _require_credentials(session):
                return 1
            tag_code = _run_tagging(session)
            upload_code = _run_upload(session)
            return max(tag_code, upload_code)
        elif command == 'retry':
            job = _find_job(session, args.job_id)
            if job is None:
                return 1
            session.retry(job)
        elif command == 'set-path':
            job = _find_job(session, args.job_id)
            if job is None:
                return 1
            project = None
            if args.project:
                project = session.catalog.find_by_id(args.project)
                if project is None:
                    print(f"Unknown project {args.project!r}", file=sys.stderr)
                    return 1
            session.set_destination(job, args.key, project=project)
        elif command == 'remove':
            job = _find_job(session, args.job_id)
            if job is None:
                return 1
            session.remove_job(job)
        elif command == 'clear':
            print(f"Removed {session.clear_completed()} completed job(s).")
        elif command == 'rename':
            job = _find_job(session, args.job_id)
            if job is None:
                return 1
            new_key = session.rename_on_remote(job, args.name)
            print(f"Renamed to s3://{job.project.bucket}/{new_key}")
        elif command == 'delete':
            job = _find_job(session, args.job_id)
            if job is None:
                return 1
            uri = session.remote_uri(job)
            session.delete_from_remote(job)
            print(f"Deleted {uri}")
            return 0
        elif command == 'import-projects':
            projects = session.import_projects(Path(args.file))
            print(f"Imported {len(projects)} project(s).")
            for project in projects:
                print(f"  {project.id}: episode {project.episode_number:03d} -> s3://{project.bucket}/{project.base_path}")
            return 0
        elif command == 'remove-projects':
            session.remove_all_projects()
            print('Removed all projects.')
            return 0
        elif command == 'check':
            status = session.check_credentials()
            if status.is_valid:
                print(f"AWS credentials valid (account {status.account}).")
                return 0
            _report_invalid(status)
            return 1
    except (CatalogError, StorageError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print('\nJobs:')
    print_preview(iter_preview_lines(session.jobs))
    return 0


if __name__ == '__main__':
    sys.exit(main())
