# projectstore/routes.py
import uuid

from flask import (render_template, request, flash, redirect, url_for,
                   current_app, jsonify, session, g, abort)

from app import db
from . import projectstore_bp
from .context import get_store
from .exceptions import (DeliveryError, GatewayUnavailableError, InvalidEmailError,
                         ProjectNotFoundError, TransactionNotFoundError)
from .purchase import PurchaseState
from .storage import new_device_id
from .verification import VerificationReconciler, return_params, strip_return_params

DOWNLOAD_SCREEN_KEY = 'download_screen'


def _valid_device_id(value):
    try:
        return str(uuid.UUID(value)) == value
    except (TypeError, ValueError):
        return False


@projectstore_bp.before_app_request
def load_device():
    """Every browser profile gets a device id; purchases are remembered per device."""
    device_id = request.cookies.get(current_app.config['DEVICE_COOKIE_NAME'])
    g.new_device = not _valid_device_id(device_id)
    g.device_id = new_device_id() if g.new_device else device_id


@projectstore_bp.after_app_request
def remember_device(response):
    if g.get('new_device'):
        response.set_cookie(
            current_app.config['DEVICE_COOKIE_NAME'],
            g.device_id,
            max_age=current_app.config['DEVICE_COOKIE_MAX_AGE'],
            httponly=True,
            samesite='Lax',
        )
    return response


def _orchestrator():
    return get_store().orchestrator_for(g.device_id)


def _entitlements():
    return get_store().entitlements_for(g.device_id)


def _show_download_screen(outcome):
    session[DOWNLOAD_SCREEN_KEY] = {
        'project_id': outcome.project.id,
        'reference': outcome.transaction.reference,
        'delay_ms': outcome.delivery.delay_ms if outcome.delivery else 0,
        'auto_download': outcome.delivery is not None,
    }


@projectstore_bp.route('/')
def shop():
    """Displays the store. Also picks up payment return URLs (?reference=&project=)."""
    params = return_params(request.args)
    if params:
        reference, project_id = params
        current_app.logger.info(f"Return URL for reference {reference}, project {project_id}")
        try:
            outcome = _orchestrator().handle_return(reference, project_id)
        except Exception as e:
            db.session.rollback()
            current_app.logger.error(f"Error handling return for {reference}: {e}", exc_info=True)
            flash('Something went wrong while confirming your payment. Please contact support.', 'danger')
            outcome = None
        if outcome is not None and outcome.project is not None \
                and outcome.state in (PurchaseState.ENTITLED, PurchaseState.DELIVERED):
            _show_download_screen(outcome)
            return redirect(url_for('.purchase_success'))
        return redirect(strip_return_params(request.full_path))

    store = get_store()
    orchestrator = _orchestrator()
    catalog = orchestrator.catalog
    school = request.args.get('school', 'all')
    departments = catalog.departments_for(school)
    department = request.args.get('department', 'all')
    if department not in departments:
        department = 'all'
    query = request.args.get('q', '')

    return render_template(
        'projectstore/shop.html',
        projects=catalog.query(school, department, query),
        schools=catalog.schools,
        departments=departments,
        selected_school=school,
        selected_department=department,
        query=query,
        owned=set(orchestrator.entitlements.owned_ids()),
        pending=orchestrator.pending_project_ids(),
        catalog_error=store.catalog_error,
    )


@projectstore_bp.route('/buy/<project_id>', methods=['GET', 'POST'])
def buy(project_id):
    """
    GET: Shows the email form, or redelivers a project this device already owns.
    POST: Hands the purchase over to the payment widget.
    """
    orchestrator = _orchestrator()
    try:
        if request.method == 'POST':
            outcome = orchestrator.submit_email(project_id, request.form.get('email'))
        else:
            outcome = orchestrator.request_purchase(project_id)
    except ProjectNotFoundError:
        abort(404)
    except InvalidEmailError as e:
        flash(str(e), 'danger')
        return redirect(url_for('.buy', project_id=project_id))
    except GatewayUnavailableError as e:
        flash(str(e), 'danger')
        return redirect(url_for('.shop'))
    except DeliveryError as e:
        current_app.logger.error(f"Redelivery of {project_id} failed: {e}")
        flash('The download could not be started. Please try again.', 'warning')
        return redirect(url_for('.shop'))

    if outcome.delivery is not None:
        return redirect(outcome.delivery.url)
    if outcome.state == PurchaseState.AWAITING_GATEWAY:
        return render_template(
            'projectstore/checkout.html',
            project=outcome.project,
            checkout=outcome.checkout,
            reference=outcome.transaction.reference,
        )
    return render_template('projectstore/buy_form.html', project=outcome.project)


@projectstore_bp.route('/purchase/<reference>/complete', methods=['POST'])
def complete_purchase(reference):
    """Success callback of the in-page payment widget."""
    try:
        outcome = _orchestrator().confirm_client_payment(reference)
    except TransactionNotFoundError:
        flash('This payment session has expired. If you were charged, please contact support.', 'warning')
        return redirect(url_for('.shop'))
    except Exception as e:
        db.session.rollback()
        current_app.logger.error(f"Error completing purchase {reference}: {e}", exc_info=True)
        flash('Something went wrong while saving your purchase. Please contact support.', 'danger')
        return redirect(url_for('.shop'))

    if outcome.project is None or outcome.state == PurchaseState.VERIFICATION_FAILED:
        return redirect(url_for('.shop'))
    _show_download_screen(outcome)
    return redirect(url_for('.purchase_success'))


@projectstore_bp.route('/purchase/<reference>/cancel', methods=['POST'])
def cancel_purchase(reference):
    """The buyer closed the payment widget."""
    _orchestrator().cancel(reference)
    return redirect(url_for('.shop'))


@projectstore_bp.route('/purchase/success')
def purchase_success():
    screen = session.get(DOWNLOAD_SCREEN_KEY)
    project = _entitlements().last_purchase()
    if not screen or project is None or project.id != screen.get('project_id'):
        return redirect(url_for('.shop'))

    auto_download = screen.get('auto_download', False)
    if auto_download:
        session[DOWNLOAD_SCREEN_KEY] = dict(screen, auto_download=False)

    return render_template(
        'projectstore/download.html',
        project=project,
        reference=screen.get('reference'),
        download_url=get_store().delivery_executor().locator(project),
        delay_ms=screen.get('delay_ms', 0),
        auto_download=auto_download,
    )


@projectstore_bp.route('/download/<project_id>')
def download(project_id):
    """Download an owned project; not-yet-owned projects go to checkout."""
    try:
        outcome = _orchestrator().request_purchase(project_id)
    except ProjectNotFoundError:
        abort(404)
    except DeliveryError as e:
        current_app.logger.error(f"Download of {project_id} failed: {e}")
        flash('The download could not be started. Please try again.', 'warning')
        return redirect(url_for('.shop'))
    if outcome.delivery is None:
        return redirect(url_for('.buy', project_id=project_id))
    return redirect(outcome.delivery.url)


@projectstore_bp.route('/download-again')
def download_again():
    """Retry the download of the most recent purchase."""
    project = _entitlements().last_purchase()
    if project is None:
        flash('Download session expired. Please purchase again.', 'danger')
        return redirect(url_for('.shop'))
    try:
        delivery = get_store().delivery_executor(flash).deliver(project)
    except DeliveryError as e:
        current_app.logger.error(f"Retry download of {project.id} failed: {e}")
        flash('The download could not be started. Please try again.', 'warning')
        return redirect(url_for('.shop'))
    return redirect(delivery.url)


@projectstore_bp.route('/back-to-store')
def back_to_store():
    session.pop(DOWNLOAD_SCREEN_KEY, None)
    return redirect(url_for('.shop'))


@projectstore_bp.route('/api/config')
def api_config():
    try:
        key = get_store().checkout.key_resolver.resolve()
    except GatewayUnavailableError as e:
        return jsonify({'error': str(e)}), 503
    return jsonify({'PAYSTACK_PUBLIC_KEY': key})


@projectstore_bp.route('/api/verify', methods=['POST'])
def api_verify():
    data = request.get_json(silent=True) or {}
    reference = data.get('reference') if isinstance(data, dict) else None
    if not isinstance(reference, str) or not reference.strip():
        return jsonify({'verified': False, 'error': 'Missing reference'}), 400
    reconciler = VerificationReconciler(get_store().paystack_verifier, logger=current_app.logger)
    return jsonify({'verified': reconciler.verify(reference.strip())})


@projectstore_bp.route('/api/projects')
def api_projects():
    store = get_store()
    catalog = store.ensure_catalog()
    if store.catalog_error:
        return jsonify({'error': store.catalog_error}), 503

    owned = set(_entitlements().owned_ids())
    projects = catalog.query(
        request.args.get('school'),
        request.args.get('department'),
        request.args.get('q'),
    )
    return jsonify({
        'schools': [{'name': s.name, 'departments': list(s.departments)} for s in catalog.schools],
        'projects': [dict(p.to_dict(), owned=p.id in owned) for p in projects],
    })
