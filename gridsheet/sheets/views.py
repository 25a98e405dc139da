import json
import logging
import re

from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_GET, require_POST

from . import forms
from .errors import InvalidArgument, SheetError
from .service import open_sheet

logger = logging.getLogger(__name__)

# instance names from URLs map to files directly under SPREADSHEET_FOLDER
INSTANCE_NAME_RE = re.compile(r"^\w[\w.-]*$")


# operation -> (form class, call building the service call from cleaned data)
OPERATIONS = {
    'view': (forms.RangeForm, lambda sheet, d, f: sheet.view(d['range'] or None)),
    'get': (forms.CellForm, lambda sheet, d, f: sheet.get(d['cell'])),
    'set': (forms.SetCellForm, lambda sheet, d, f: sheet.set(d['cell'], d['value'])),
    'add': (forms.ValuesForm, lambda sheet, d, f: sheet.add(d['values'])),
    'push': (forms.PushForm, lambda sheet, d, f: sheet.push(d['rows'])),
    'remove': (forms.RowForm, lambda sheet, d, f: sheet.remove(d['row'])),
    'update': (forms.UpdateForm, lambda sheet, d, f: sheet.update(d['row'], d['values'])),
    'query': (forms.QueryForm, lambda sheet, d, f: sheet.query(d['where'], d['limit'])),
    'sort': (forms.SortForm, lambda sheet, d, f: sheet.sort(d['column'], d['order'] or None)),
    'fill': (forms.FillForm, lambda sheet, d, f: sheet.fill(d['range'], d['pattern'])),
    'schema': (forms.NoArgumentsForm, lambda sheet, d, f: sheet.schema()),
    'resize': (forms.ResizeForm, lambda sheet, d, f: sheet.resize(d['rows'], d['cols'])),
    'ingest': (forms.IngestForm, lambda sheet, d, f: sheet.ingest(*f.source())),
    'dump': (forms.DumpForm, lambda sheet, d, f: sheet.dump(d['file'] or None)),
    'clear': (forms.RangeForm, lambda sheet, d, f: sheet.clear(d['range'] or None)),
    'rename': (forms.RenameForm, lambda sheet, d, f: sheet.rename(d['column'], d['name'])),
}


def error_response(error, message, status=400, **extra):
    payload = {"success": False, "error": error, "message": message}
    payload.update(extra)
    return JsonResponse(payload, status=status)


def get_sheet(instance):
    if not INSTANCE_NAME_RE.match(instance):
        raise InvalidArgument(
            f"Invalid instance name: '{instance}'",
            "Use letters, digits, '_', '-' and '.'",
        )
    return open_sheet(instance)


def request_payload(request):
    """JSON body, or form fields for multipart/urlencoded posts."""
    if request.content_type == "application/json":
        if not request.body:
            return {}
        data = json.loads(request.body)
        if not isinstance(data, dict):
            raise ValueError("Request body must be a JSON object")
        return data
    return request.POST


@require_GET
def index(request, instance):
    """Current contents of a sheet."""
    try:
        result = get_sheet(instance).view()
    except SheetError as e:
        return error_response(e.error_code, e.message, details=e.details)
    return JsonResponse({"success": True, **result})


@csrf_exempt
@require_POST
def operation(request, instance, operation):
    """Run one spreadsheet operation against a named instance."""
    if operation not in OPERATIONS:
        return error_response(
            "#OPERATION?",
            f"Unknown operation '{operation}'",
            status=404,
            operations=sorted(OPERATIONS),
        )

    try:
        payload = request_payload(request)
    except ValueError as e:
        return error_response("#JSON!", f"Invalid request body: {e}")

    form_class, call = OPERATIONS[operation]
    form = form_class(payload, request.FILES)
    if not form.is_valid():
        return error_response(
            "#VALUE!",
            "Invalid parameters",
            errors={field: [str(m) for m in messages] for field, messages in form.errors.items()},
        )

    try:
        result = call(get_sheet(instance), form.cleaned_data, form)
    except SheetError as e:
        logger.info("%s on %s failed: %s", operation, instance, e)
        return error_response(e.error_code, e.message, details=e.details)

    return JsonResponse({"success": True, **result})
